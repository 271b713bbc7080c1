"""Cursor-paginated collection fetcher with rate-limit backoff."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

import requests

from scripts.alerting.errors import FetchError, FetchErrorKind
from scripts.alerting.models import Entity, FetchResult, Page

logger = logging.getLogger("alerting.fetcher")

THROTTLE_MARKERS = ("toomanyrequests", "throttl", "rate limit")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff applied while the endpoint signals rate limiting.

    ``max_retries=None`` retries the same cursor forever: a throttled job
    only gets slower, it never loses a page. Set a number to bound the run
    time; the fetch then ends with a RATE_LIMIT_EXHAUSTED error.
    """

    backoff_seconds: float = 60.0
    multiplier: float = 1.0
    max_backoff_seconds: float = 900.0
    jitter_seconds: float = 0.0
    max_retries: Optional[int] = None
    honor_retry_after: bool = False

    def delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        delay = self.backoff_seconds * (self.multiplier ** attempt)
        delay = min(delay, self.max_backoff_seconds)
        if self.jitter_seconds > 0:
            delay += random.uniform(0, self.jitter_seconds)
        if self.honor_retry_after and retry_after is not None:
            delay = max(delay, retry_after)
        return delay

    def exhausted(self, attempt: int) -> bool:
        return self.max_retries is not None and attempt >= self.max_retries


class PagedFetcher:
    """Retrieve every page of a next-link paginated collection.

    Pages are requested one after another with a small fixed delay between
    them. Rate-limited responses are retried on the same cursor after the
    policy's backoff. Any other failure ends the fetch; the entities
    accumulated so far are returned with the error attached instead of
    being discarded.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        page_delay_seconds: float = 0.1,
        timeout_seconds: float = 30.0,
        items_key: str = "value",
        next_key: str = "@odata.nextLink",
        id_key: str = "id",
        throttle_markers: Sequence[str] = THROTTLE_MARKERS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session or requests.Session()
        self._retry = retry_policy or RetryPolicy()
        self._page_delay = page_delay_seconds
        self._timeout = timeout_seconds
        self._items_key = items_key
        self._next_key = next_key
        self._id_key = id_key
        self._throttle_markers = tuple(m.lower() for m in throttle_markers)
        self._sleep = sleep

    @property
    def session(self) -> requests.Session:
        return self._session

    def fetch(self, start_uri: str, params: Optional[dict] = None) -> FetchResult:
        """Fetch all pages starting at ``start_uri``.

        ``params`` apply to the first request only; next links already
        carry their query.
        """
        accumulated: list[Entity] = []
        cursor: Optional[str] = start_uri
        params = dict(params or {})
        pages = 0
        requests_issued = 0
        waits = 0
        attempt = 0

        while cursor:
            if pages > 0 and self._page_delay > 0:
                self._sleep(self._page_delay)

            requests_issued += 1
            try:
                resp = self._session.get(cursor, params=params or None, timeout=self._timeout)
            except requests.RequestException as exc:
                return self._partial(
                    FetchErrorKind.NETWORK_ERROR, str(exc), accumulated, cursor,
                    pages=pages, requests_issued=requests_issued, waits=waits,
                )

            if self._is_rate_limited(resp):
                if self._retry.exhausted(attempt):
                    return self._partial(
                        FetchErrorKind.RATE_LIMIT_EXHAUSTED,
                        f"Still rate limited after {attempt} retries",
                        accumulated, cursor, status_code=resp.status_code,
                        pages=pages, requests_issued=requests_issued, waits=waits,
                    )
                delay = self._retry.delay(attempt, _retry_after(resp))
                logger.warning(
                    "Rate limited, sleeping %.1fs (attempt %d)",
                    delay, attempt + 1,
                    extra={"cursor": cursor, "attempt": attempt + 1},
                )
                self._sleep(delay)
                attempt += 1
                waits += 1
                continue

            if resp.status_code >= 400:
                return self._partial(
                    FetchErrorKind.HTTP_ERROR, _error_message(resp), accumulated, cursor,
                    status_code=resp.status_code,
                    pages=pages, requests_issued=requests_issued, waits=waits,
                )

            try:
                page = self.parse_page(resp)
            except ValueError as exc:
                return self._partial(
                    FetchErrorKind.INVALID_RESPONSE, str(exc), accumulated, cursor,
                    status_code=resp.status_code,
                    pages=pages, requests_issued=requests_issued, waits=waits,
                )

            accumulated.extend(page.entities)
            pages += 1
            attempt = 0
            params = {}
            cursor = page.next_cursor

        logger.info(
            "Fetched %d entities from %d pages",
            len(accumulated), pages,
            extra={"cursor": start_uri, "entities": len(accumulated)},
        )
        return FetchResult(
            entities=tuple(accumulated),
            pages=pages,
            requests=requests_issued,
            rate_limit_waits=waits,
        )

    def parse_page(self, resp: requests.Response) -> Page:
        """Turn one response into a Page. Raises ValueError on an unexpected shape."""
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ValueError(f"Response is not JSON: {exc}") from exc

        next_cursor: Optional[str] = None
        if isinstance(payload, list):
            items = payload
        elif isinstance(payload, dict):
            items = payload.get(self._items_key)
            if items is None and self._id_key in payload:
                # Singleton resource rather than a collection
                items = [payload]
            next_cursor = payload.get(self._next_key) or None
        else:
            raise ValueError(f"Unexpected payload type {type(payload).__name__}")

        if not isinstance(items, list):
            raise ValueError(f"Missing '{self._items_key}' list in response")

        if not next_cursor:
            next_cursor = (resp.links or {}).get("next", {}).get("url") or None

        return Page(
            entities=tuple(self._to_entity(item) for item in items),
            next_cursor=next_cursor,
        )

    def _to_entity(self, item: Any) -> Entity:
        if not isinstance(item, dict):
            raise ValueError(f"Collection item is not an object: {item!r:.80}")
        raw_id = item.get(self._id_key)
        if raw_id is None or raw_id == "":
            raise ValueError(f"Collection item has no '{self._id_key}'")
        return Entity(id=str(raw_id), attributes=item)

    def _is_rate_limited(self, resp: requests.Response) -> bool:
        if resp.status_code == 429:
            return True
        if resp.status_code < 400:
            return False
        body = (resp.text or "").lower()
        return any(marker in body for marker in self._throttle_markers)

    def _partial(
        self,
        kind: FetchErrorKind,
        message: str,
        accumulated: list[Entity],
        cursor: str,
        *,
        status_code: Optional[int] = None,
        pages: int,
        requests_issued: int,
        waits: int,
    ) -> FetchResult:
        error = FetchError(
            kind, message, accumulated, status_code=status_code, cursor=cursor,
        )
        logger.warning(
            "Fetch stopped early, continuing with %d entities: %s",
            len(accumulated), error,
            extra={"cursor": cursor, "entities": len(accumulated)},
        )
        return FetchResult(
            entities=tuple(accumulated),
            error=error,
            pages=pages,
            requests=requests_issued,
            rate_limit_waits=waits,
        )


def _retry_after(resp: requests.Response) -> Optional[float]:
    value = resp.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _error_message(resp: requests.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return (resp.text or "")[:300] or f"HTTP {resp.status_code}"
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        err = payload["error"]
        code = err.get("code", "")
        message = err.get("message", "")
        return f"{code}: {message}".strip(": ")
    return str(payload)[:300]
