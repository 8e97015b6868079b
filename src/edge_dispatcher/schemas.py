# In src/edge_dispatcher/schemas.py

import base64
import binascii
from typing import Any, TypedDict

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import InvalidEventError
from .shims import ShimmedRequest, ShimmedResponse

# --- Static Type Hinting (for mypy and IDEs) ---


class FunctionUrlResponse(TypedDict, total=False):
    """The response shape a Lambda Function URL (payload 2.0) expects."""

    statusCode: int
    headers: dict[str, str]
    cookies: list[str]
    body: str
    isBase64Encoded: bool


# --- Runtime Validation (using Pydantic) ---


class HttpModel(BaseModel):
    method: str = Field(..., min_length=1)
    path: str | None = None
    source_ip: str | None = Field(None, alias="sourceIp")


class RequestContextModel(BaseModel):
    domain_name: str = Field(..., alias="domainName", min_length=1)
    request_id: str | None = Field(None, alias="requestId")
    http: HttpModel


class FunctionUrlEvent(BaseModel):
    """
    Pydantic model for runtime parsing and validation of a Function URL /
    HTTP API (payload 2.0) event.
    """

    model_config = ConfigDict(populate_by_name=True)

    raw_path: str = Field("/", alias="rawPath")
    raw_query_string: str = Field("", alias="rawQueryString")
    headers: dict[str, str] = Field(default_factory=dict)
    cookies: list[str] = Field(default_factory=list)
    body: str | None = None
    is_base64_encoded: bool = Field(False, alias="isBase64Encoded")
    request_context: RequestContextModel = Field(..., alias="requestContext")

    @field_validator("raw_path")
    @classmethod
    def validate_raw_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("rawPath must start with '/'")
        return value

    @field_validator("headers", mode="before")
    @classmethod
    def lowercase_headers(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k).lower(): v for k, v in value.items()}
        return value

    @property
    def host(self) -> str:
        return self.headers.get("host") or self.request_context.domain_name

    @property
    def url(self) -> str:
        scheme = self.headers.get("x-forwarded-proto", "https")
        url = f"{scheme}://{self.host}{self.raw_path}"
        if self.raw_query_string:
            url += f"?{self.raw_query_string}"
        return url

    def body_bytes(self) -> bytes:
        if self.body is None:
            return b""
        if not self.is_base64_encoded:
            return self.body.encode("utf-8")
        try:
            return base64.b64decode(self.body, validate=True)
        except binascii.Error as e:
            raise InvalidEventError(
                "Event body is flagged as base64 but does not decode",
                context={"body_length": len(self.body)},
            ) from e

    def to_request(self) -> ShimmedRequest:
        headers = list(self.headers.items())
        if self.cookies:
            headers.append(("cookie", "; ".join(self.cookies)))
        return ShimmedRequest(
            self.request_context.http.method,
            self.url,
            headers=headers,
            body=self.body_bytes() or None,
        )


# --- Response Conversion ---

_TEXT_CONTENT_TYPES = (
    "text/",
    "application/json",
    "application/javascript",
    "application/xml",
    "application/x-www-form-urlencoded",
    "image/svg+xml",
)


def _is_text(content_type: str, content_encoding: str | None) -> bool:
    if content_encoding and content_encoding.lower() != "identity":
        return False
    return content_type.lower().startswith(_TEXT_CONTENT_TYPES)


async def to_lambda_response(
    response: ShimmedResponse, *, head: bool = False
) -> FunctionUrlResponse:
    """
    Read *response* to completion and convert it to the Function URL shape.
    Text bodies are passed as-is, everything else is base64 encoded.
    """
    body = await response.read()
    if head:
        body = b""

    headers: dict[str, str] = {}
    cookies: list[str] = []
    for key, value in response.headers.multi_items():
        if key == "set-cookie":
            cookies.append(value)
        elif key in headers:
            headers[key] = f"{headers[key]}, {value}"
        else:
            headers[key] = value

    result: FunctionUrlResponse = {"statusCode": response.status, "headers": headers}
    if cookies:
        result["cookies"] = cookies

    if _is_text(headers.get("content-type", ""), headers.get("content-encoding")):
        try:
            result["body"] = body.decode("utf-8")
            result["isBase64Encoded"] = False
            return result
        except UnicodeDecodeError:
            pass  # Mislabelled binary body, sent as base64 below.

    result["body"] = base64.b64encode(body).decode("ascii")
    result["isBase64Encoded"] = True
    return result
