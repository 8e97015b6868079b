# src/edge_dispatcher/clients.py

"""
Client wrapper for sending signed requests to the object-storage backend.

The edge platform addresses origins by a backend *name*; this module maps a
name to an origin URL and performs the fetch with httpx, handing the response
back as a ``ShimmedResponse`` whose body is streamed without being decoded.
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol
from urllib.parse import urlsplit

import httpx

from .exceptions import BackendUnavailable
from .shims import BodyStream, ShimmedRequest, ShimmedResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CacheOverride:
    """Caching directive applied by the delivering cache to a backend response."""

    ttl: int
    mode: str = "override"

    @property
    def surrogate_control(self) -> str:
        return f"max-age={self.ttl}"


class BackendClient(Protocol):
    async def fetch(
        self,
        request: ShimmedRequest,
        *,
        backend: str,
        cache_override: Optional[CacheOverride] = None,
    ) -> ShimmedResponse: ...


class HttpxBackendClient:
    """
    A BackendClient over ``httpx.AsyncClient``.

    Raises ``BackendUnavailable`` for transport failures; HTTP error statuses
    are returned as ordinary responses.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        origins: Optional[Mapping[str, str]] = None,
    ):
        """
        Initializes the HttpxBackendClient.

        Args:
            http_client: The async client used for every fetch. The caller owns it.
            origins: Optional backend name to origin base URL mapping. Backends
                without an entry are reached at ``https://<Host header>``.
        """
        self._client = http_client
        self._origins = dict(origins or {})

    def target_url(self, request: ShimmedRequest, backend: str) -> str:
        parts = urlsplit(request.url)
        origin = self._origins.get(backend)
        if origin is None:
            host = request.headers.get("host")
            if not host:
                raise BackendUnavailable(
                    backend, "no origin configured and request has no Host header"
                )
            origin = f"https://{host}"
        url = origin.rstrip("/") + (parts.path or "/")
        if parts.query:
            url += f"?{parts.query}"
        return url

    async def fetch(
        self,
        request: ShimmedRequest,
        *,
        backend: str,
        cache_override: Optional[CacheOverride] = None,
    ) -> ShimmedResponse:
        url = self.target_url(request, backend)
        content = await request.read() if request.body is not None else None
        outbound = self._client.build_request(
            request.method, url, headers=request.headers, content=content
        )

        try:
            response = await self._client.send(outbound, stream=True)
        except httpx.TimeoutException as e:
            raise BackendUnavailable(
                backend, "timeout", context={"url": url, "timeout_error": str(e)}
            ) from e
        except httpx.ConnectError as e:
            raise BackendUnavailable(
                backend, "connection error", context={"url": url, "connection_error": str(e)}
            ) from e
        except httpx.TransportError as e:
            raise BackendUnavailable(
                backend, type(e).__name__, context={"url": url, "transport_error": str(e)}
            ) from e

        logger.debug(
            "Backend responded",
            extra={"backend": backend, "url": url, "status": response.status_code},
        )

        headers = httpx.Headers(response.headers)
        if cache_override is not None:
            headers["surrogate-control"] = cache_override.surrogate_control

        if response.is_stream_consumed:
            # Already loaded by the transport, and decoded by httpx while loading.
            source = response.content
            if headers.pop("content-encoding", None) is not None:
                headers.pop("content-length", None)
        else:
            source = response.aiter_raw()
        body = BodyStream(source, on_close=response.aclose)
        return ShimmedResponse(body, status=response.status_code, headers=headers)
