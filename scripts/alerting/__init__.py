"""Device-management alerting jobs.

Queries a device-management REST API (Microsoft Graph / Intune), follows
next-link pagination through rate limiting, classifies the results, and
sends email or webhook alerts without repeating itself between runs.
"""
