"""
The Lambda Adapter & Entry Point for the Edge Dispatcher service.

This module is the main entry point for the AWS Lambda function behind a
Function URL. It is responsible for:
1.  Initializing and configuring AWS Lambda Powertools (Logger, Tracer, Metrics).
2.  Loading the configuration, the bucket credentials and the application
    handler once per execution environment.
3.  Validating the incoming Function URL event and converting it into a
    ShimmedRequest.
4.  Running the dispatcher (asset proxy first, application handler second)
    for the request.
5.  Converting the final response back into the Function URL response shape,
    never leaking internal detail when something fails.
"""

import asyncio
import importlib

import httpx
import pydantic
from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.logging.utils import copy_config_to_registered_loggers
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext

from .assets import AssetProxy
from .clients import HttpxBackendClient
from .config import build_credential_store, get_config, load_s3_credentials
from .exceptions import ConfigurationError, InvalidEventError, get_error_context
from .router import (
    INTERNAL_ERROR_BODY,
    ROUTE_APP,
    ROUTE_ASSET,
    AppHandler,
    FetchEvent,
    create_event_handler,
)
from .schemas import FunctionUrlEvent, FunctionUrlResponse, to_lambda_response

# --- Global & Reusable Components ---
CONFIG = get_config()

logger = Logger(service=CONFIG.service_name, level=CONFIG.log_level)
tracer = Tracer(service=CONFIG.service_name)
metrics = Metrics(
    namespace="EdgeDispatcher",
    service=CONFIG.service_name,
)

# Route the library modules' standard loggers through the structured logger.
copy_config_to_registered_loggers(source_logger=logger, include={"edge_dispatcher"})


def load_app_handler(reference: str) -> AppHandler:
    """Resolve a ``package.module:callable`` reference to the application handler."""
    module_name, _, attr = reference.partition(":")
    try:
        module = importlib.import_module(module_name)
        app_handler = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load application handler '{reference}': {e}") from e
    if not callable(app_handler):
        raise ConfigurationError(f"Application handler '{reference}' is not callable")
    return app_handler


S3_CREDENTIALS = load_s3_credentials(
    build_credential_store(CONFIG.credential_store), CONFIG.asset_credentials
)
APP_HANDLER = load_app_handler(CONFIG.app_handler)


def get_load_context(event: FetchEvent) -> dict:
    """Per-request values handed to the application handler."""
    return {
        "pop": CONFIG.pop,
        "request_id": getattr(event.host_context, "aws_request_id", None),
        "client_address": event.client_address,
    }


def _build_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(CONFIG.backend_timeout_seconds), trust_env=False
    )


def _plain_response(status: int, body: str) -> FunctionUrlResponse:
    return {
        "statusCode": status,
        "headers": {"content-type": "text/plain;charset=UTF-8"},
        "body": body,
        "isBase64Encoded": False,
    }


async def dispatch(event: FetchEvent) -> FunctionUrlResponse:
    """Run one request through the dispatcher and convert the result."""
    # The client is bound to the running event loop, so it lives for one request.
    async with _build_http_client() as http_client:
        asset_proxy = AssetProxy(
            manifest_url=CONFIG.asset_manifest_url,
            backend_config=CONFIG.backend_config,
            credentials=S3_CREDENTIALS,
            client=HttpxBackendClient(http_client, origins=CONFIG.backend_origins),
        )
        event_handler = create_event_handler(
            app_handler=APP_HANDLER,
            asset_proxy=asset_proxy,
            get_load_context=get_load_context,
        )
        response = await event_handler.handle(event)
        return await to_lambda_response(
            response, head=event.request.method == "HEAD"
        )


@logger.inject_lambda_context()
@tracer.capture_lambda_handler
@metrics.log_metrics(capture_cold_start_metric=True)
def handler(event: dict, context: LambdaContext) -> FunctionUrlResponse:
    """Main Lambda handler for Function URL events."""
    metrics.add_dimension("environment", CONFIG.environment)

    # --- 1. Parse and validate the host event ---
    try:
        parsed = FunctionUrlEvent.model_validate(event)
        request = parsed.to_request()
    except pydantic.ValidationError as e:
        metrics.add_metric(name="InvalidEvents", unit=MetricUnit.Count, value=1)
        logger.warning(
            "Event failed Function URL schema validation.",
            extra={"validation_errors": e.errors(include_url=False, include_input=False)},
        )
        return _plain_response(400, "Bad Request")
    except InvalidEventError as e:
        metrics.add_metric(name="InvalidEvents", unit=MetricUnit.Count, value=1)
        logger.warning("Event could not be converted to a request.", extra=get_error_context(e))
        return _plain_response(400, "Bad Request")

    fetch_event = FetchEvent(
        request=request,
        client_address=parsed.request_context.http.source_ip,
        host_context=context,
    )
    logger.debug(
        "Dispatching request",
        extra={"method": request.method, "path": request.path},
    )

    # --- 2. Dispatch ---
    try:
        result = asyncio.run(dispatch(fetch_event))
    except Exception as e:
        # Failures after routing, e.g. a backend stream breaking mid-body.
        metrics.add_metric(name="DispatchFailures", unit=MetricUnit.Count, value=1)
        logger.exception(
            "A non-recoverable error occurred while sending the response.",
            extra={"error_type": type(e).__name__},
        )
        return _plain_response(500, INTERNAL_ERROR_BODY)

    # --- 3. Record which path served the request ---
    if fetch_event.route == ROUTE_ASSET:
        metrics.add_metric(name="AssetResponses", unit=MetricUnit.Count, value=1)
    elif fetch_event.route == ROUTE_APP:
        metrics.add_metric(name="AppResponses", unit=MetricUnit.Count, value=1)
    else:
        metrics.add_metric(name="DispatchFailures", unit=MetricUnit.Count, value=1)

    logger.info(
        "Request dispatched",
        extra={
            "method": request.method,
            "path": request.path,
            "route": fetch_event.route,
            "status": result["statusCode"],
        },
    )
    return result
