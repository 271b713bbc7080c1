"""Resolve secret references held in settings.

Any secret-bearing setting (GRAPH_CLIENT_SECRET, SMTP_PASSWORD,
ALERT_WEBHOOK_URL, DATABASE_URL, PG_PASSWORD) may carry a reference
instead of the literal value:

  aws-secret://NAME            whole SecretString from AWS Secrets Manager
  aws-secret://NAME#FIELD      one field of a JSON SecretString
  gcp-secret://NAME            latest version in the current GCP project
  gcp-secret://projects/...    fully qualified GCP secret version

Resolved values are cached for the life of the process, so a scheduler
loop does not call the secret service on every run.
"""

from __future__ import annotations

import functools
import json
import logging
import os
from typing import NamedTuple, Optional

logger = logging.getLogger("alerting.secrets")

_SCHEMES = ("aws-secret", "gcp-secret")


class SecretRef(NamedTuple):
    scheme: str
    name: str
    field: Optional[str]


def parse_reference(value: str) -> Optional[SecretRef]:
    """Split ``scheme://name#field``; None when the value is a literal."""
    scheme, sep, rest = value.partition("://")
    if not sep or scheme not in _SCHEMES or not rest:
        return None
    name, _, field_name = rest.partition("#")
    return SecretRef(scheme, name, field_name or None)


def resolve_secret(value: str) -> str:
    """Return the plaintext for ``value``, fetching it if it is a reference."""
    ref = parse_reference(value)
    if ref is None:
        return value
    return _fetch(ref)


@functools.lru_cache(maxsize=None)
def _fetch(ref: SecretRef) -> str:
    if ref.scheme == "aws-secret":
        raw = _aws_secret_string(ref.name)
    else:
        raw = _gcp_secret_string(ref.name)
    if ref.field is None:
        return raw
    try:
        return str(json.loads(raw)[ref.field])
    except (ValueError, KeyError, TypeError) as exc:
        raise ValueError(f"Secret {ref.name} has no JSON field {ref.field!r}") from exc


def _aws_secret_string(name: str) -> str:
    import boto3

    client = boto3.client(
        "secretsmanager", region_name=os.environ.get("AWS_REGION", "us-east-1"),
    )
    logger.debug("Fetching AWS secret %s", name)
    return client.get_secret_value(SecretId=name)["SecretString"]


def _gcp_secret_string(name: str) -> str:
    from google.cloud import secretmanager

    if not name.startswith("projects/"):
        project = os.environ.get("GCP_PROJECT_ID") or _gcp_project_from_metadata()
        name = f"projects/{project}/secrets/{name}/versions/latest"

    logger.debug("Fetching GCP secret %s", name)
    client = secretmanager.SecretManagerServiceClient()
    response = client.access_secret_version(request={"name": name})
    return response.payload.data.decode("UTF-8")


def _gcp_project_from_metadata() -> str:
    """Project id from the metadata server (Cloud Run, GCE)."""
    import requests

    try:
        resp = requests.get(
            "http://metadata.google.internal/computeMetadata/v1/project/project-id",
            headers={"Metadata-Flavor": "Google"},
            timeout=2,
        )
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise RuntimeError(
            "Cannot determine GCP project for secret lookup; set GCP_PROJECT_ID"
        ) from exc
    return resp.text.strip()


def resolve_database_url() -> str:
    """DATABASE_URL if set, else a DSN assembled from PG_* variables."""
    url = os.environ.get("DATABASE_URL", "")
    if url:
        return resolve_secret(url)

    password = resolve_secret(os.environ.get("PG_PASSWORD", ""))
    return "postgresql://{user}:{password}@{host}:{port}/{db}".format(
        user=os.environ.get("PG_USER", "alerting"),
        password=password,
        host=os.environ.get("PG_HOST", "localhost"),
        port=os.environ.get("PG_PORT", "5432"),
        db=os.environ.get("PG_DATABASE", "mdm_alerting"),
    )
