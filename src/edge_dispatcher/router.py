# src/edge_dispatcher/router.py

"""
Per-request orchestration.

Every inbound event goes through two states:

1. TryAsset: the asset proxy gets the first chance; a response from it is final.
2. Dispatch: otherwise the application handler is called with the original
   request and a fresh load context.

The chosen response then gets a compression hint unless it already came
through a shield node. Any exception along the way becomes a fixed 500
response without internal detail.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from .assets import AssetProxy
from .exceptions import DispatchFailure
from .shims import ShimmedRequest, ShimmedResponse

logger = logging.getLogger(__name__)

SHIELD_HEADER = "Fastly-FF"
COMPRESS_HINT_HEADER = "x-compress-hint"
INTERNAL_ERROR_BODY = "Internal Error"

ROUTE_ASSET = "asset"
ROUTE_APP = "app"
ROUTE_ERROR = "error"


@dataclass
class FetchEvent:
    """One inbound request as delivered by the host runtime."""

    request: ShimmedRequest
    client_address: Optional[str] = None
    host_context: Any = None
    route: Optional[str] = None


AppHandler = Callable[
    [ShimmedRequest, Any], Union[ShimmedResponse, Awaitable[ShimmedResponse]]
]
GetLoadContext = Callable[[FetchEvent], Any]
RequestHandler = Callable[[FetchEvent], Awaitable[ShimmedResponse]]


def create_request_handler(
    app_handler: AppHandler, get_load_context: Optional[GetLoadContext] = None
) -> RequestHandler:
    """
    Adapt an application handler to the event model.

    A load context is built fresh for every event; *app_handler* may be a
    plain function or a coroutine function.
    """

    async def handle_request(event: FetchEvent) -> ShimmedResponse:
        load_context = get_load_context(event) if callable(get_load_context) else None
        response = app_handler(event.request, load_context)
        if inspect.isawaitable(response):
            response = await response
        return response

    return handle_request


def apply_compression_hint(response: ShimmedResponse) -> ShimmedResponse:
    if SHIELD_HEADER not in response.headers:
        response.headers[COMPRESS_HINT_HEADER] = "on"
    return response


def internal_error_response() -> ShimmedResponse:
    return ShimmedResponse(INTERNAL_ERROR_BODY, status=500)


class EventHandler:
    def __init__(
        self, asset_proxy: Optional[AssetProxy], handle_request: RequestHandler
    ):
        self._asset_proxy = asset_proxy
        self._handle_request = handle_request

    async def dispatch(self, event: FetchEvent) -> ShimmedResponse:
        """Route *event* without error containment."""
        response = None
        if self._asset_proxy is not None:
            response = await self._asset_proxy.try_serve_asset(event.request)

        if response is not None:
            event.route = ROUTE_ASSET
        else:
            event.route = ROUTE_APP
            response = await self._handle_request(event)

        return apply_compression_hint(response)

    async def handle(self, event: FetchEvent) -> ShimmedResponse:
        try:
            return await self.dispatch(event)
        except Exception as e:
            failure = DispatchFailure(e)
            logger.exception(
                "Unhandled error while dispatching request",
                extra={**failure.to_dict(), "method": event.request.method, "path": event.request.path},
            )
            event.route = ROUTE_ERROR
            return internal_error_response()


def create_event_handler(
    *,
    app_handler: AppHandler,
    asset_proxy: Optional[AssetProxy] = None,
    get_load_context: Optional[GetLoadContext] = None,
) -> EventHandler:
    handle_request = create_request_handler(app_handler, get_load_context)
    return EventHandler(asset_proxy, handle_request)
