"""
Header hygiene for requests proxied to object storage.

Three concerns live here:
- Storage-specific response headers leak bucket internals (request ids,
  version ids, the storage server banner) and are removed before a proxied
  response reaches the client.
- Inbound client headers such as cookies and `x-amz-*` are dropped before
  a request is signed for the bucket.
- Signed requests carry credentials in the Authorization header, which must
  never end up in logs.
"""

from typing import Iterable

import httpx

STORAGE_RESPONSE_HEADERS: tuple[str, ...] = (
    "x-amz-delete-marker",
    "x-amz-id-2",
    "x-amz-request-id",
    "x-amz-version-id",
    "server",
)

CLIENT_ONLY_HEADERS = frozenset({"cookie", "authorization"})
AMZ_HEADER_PREFIX = "x-amz-"

_SENSITIVE_HEADERS = frozenset({"authorization", "cookie", "x-amz-security-token"})

REDACTED = "***"


def strip_storage_headers(
    headers: httpx.Headers, names: Iterable[str] = STORAGE_RESPONSE_HEADERS
) -> list[str]:
    """
    Delete storage-specific headers in place.

    Returns:
        The names that were actually present and removed.
    """
    removed = []
    for name in names:
        if name in headers:
            del headers[name]
            removed.append(name)
    return removed


def redact_headers(headers: httpx.Headers) -> dict[str, str]:
    """Return a loggable copy of *headers* with credentials masked."""
    return {
        key: REDACTED if key.lower() in _SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def strip_client_headers(headers: httpx.Headers) -> list[str]:
    """
    Delete inbound headers that must not reach the bucket, in place.

    Cookies belong to the application, and any ``x-amz-*`` header the client
    sent would be outside the signed header set, which S3 rejects.

    Returns:
        The names that were removed.
    """
    removed = [
        key
        for key in headers.keys()
        if key in CLIENT_ONLY_HEADERS or key.startswith(AMZ_HEADER_PREFIX)
    ]
    for key in removed:
        del headers[key]
    return removed
