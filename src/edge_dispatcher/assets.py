# src/edge_dispatcher/assets.py

"""
Static asset proxy.

Serves built assets straight from the S3 bucket: GET/HEAD requests are signed
with SigV4 and sent to the storage backend. Anything the bucket cannot serve
falls through (``None``) so the application handler gets a chance instead.

Decision logic (path matching, request signing) lives in pure functions; the
only I/O is the single backend fetch in ``AssetProxy.try_serve_asset``.
"""

import logging
from datetime import datetime
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from .clients import BackendClient, CacheOverride
from .config import AssetBackendConfig, S3Credentials
from .exceptions import BackendUnavailable, get_error_context
from .security import redact_headers, strip_client_headers, strip_storage_headers
from .shims import ShimmedRequest, ShimmedResponse
from .signing import EMPTY_PAYLOAD_HASH, amz_date, canonical_uri, sign

logger = logging.getLogger(__name__)

# Built asset filenames are content-hashed, so a year is safe.
ASSET_CACHE_TTL_SECONDS = 31_536_000

PROXIED_METHODS = frozenset({"GET", "HEAD"})


def asset_directory(path: str) -> str:
    """Drop the last segment of *path*: ``/build/app.js`` -> ``/build``."""
    return "/".join(path.split("/")[:-1])


def is_build_asset(path: str, manifest_url: str) -> bool:
    """
    True when *path* lives in the manifest's directory or beneath it.

    Comparison is on whole segments, so ``/buildings/x`` is not under ``/build``.
    """
    asset_dir = asset_directory(manifest_url)
    request_dir = asset_directory(path)
    if not asset_dir:
        return True
    return request_dir == asset_dir or request_dir.startswith(asset_dir + "/")


def cache_override_for(path: str, manifest_url: str) -> Optional[CacheOverride]:
    if is_build_asset(path, manifest_url):
        return CacheOverride(ttl=ASSET_CACHE_TTL_SECONDS)
    return None


def build_asset_request(
    request: ShimmedRequest, credentials: S3Credentials, timestamp: str
) -> ShimmedRequest:
    """
    Build the signed request for the storage backend.

    The query string is dropped: it is not part of what gets signed and must
    not reach the bucket. Cookies and client ``x-amz-*`` headers are dropped
    as well. The outbound path is the canonical (single-encoded) path so the
    bucket sees exactly what was signed.
    """
    host = credentials.host
    path = canonical_uri(request.path)
    signed = sign(
        request.method,
        path,
        host,
        EMPTY_PAYLOAD_HASH,
        timestamp,
        credentials.aws_region,
        credentials.aws_access_key,
        credentials.aws_secret_key,
    )

    scheme, netloc, _, _, _ = urlsplit(request.url)
    asset_request = ShimmedRequest(
        request.method, urlunsplit((scheme, netloc, path, "", "")), request.headers
    )
    strip_client_headers(asset_request.headers)
    asset_request.headers["Host"] = host
    for name, value in signed.as_dict().items():
        asset_request.headers[name] = value
    return asset_request


class AssetProxy:
    """Signs asset requests and proxies them to the storage backend."""

    def __init__(
        self,
        manifest_url: str,
        backend_config: AssetBackendConfig,
        credentials: S3Credentials,
        client: BackendClient,
    ):
        self._manifest_url = manifest_url
        self._backend = backend_config
        self._credentials = credentials
        self._client = client

    async def try_serve_asset(
        self, request: ShimmedRequest, now: Optional[datetime] = None
    ) -> Optional[ShimmedResponse]:
        """
        Returns the storage response for *request*, or None to fall through.
        """
        if request.method not in PROXIED_METHODS:
            return None

        cache_override = cache_override_for(request.path, self._manifest_url)
        asset_request = build_asset_request(request, self._credentials, amz_date(now))
        backend_id = self._backend.backend_id

        logger.debug(
            "Proxying asset request",
            extra={
                "backend": backend_id,
                "path": asset_request.path,
                "cache_ttl": cache_override.ttl if cache_override else None,
                "headers": redact_headers(asset_request.headers),
            },
        )

        try:
            response = await self._client.fetch(
                asset_request, backend=backend_id, cache_override=cache_override
            )
        except BackendUnavailable as e:
            logger.warning(
                "Asset backend unavailable, falling through to the application",
                extra=get_error_context(e),
            )
            return None

        if not response.ok:
            # 403/404 are expected for any path that is not a static asset.
            logger.debug(
                "Asset not served by backend, falling through to the application",
                extra={"backend": backend_id, "path": request.path, "status": response.status},
            )
            if response.body is not None:
                await response.body.aclose()
            return None

        strip_storage_headers(response.headers)
        return response
