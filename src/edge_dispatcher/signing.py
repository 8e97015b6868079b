# src/edge_dispatcher/signing.py

"""
AWS Signature Version 4 for GET/HEAD requests to an S3 bucket.

Everything here is pure apart from ``amz_date()``, which reads the clock when
no timestamp is given. For fixed inputs ``sign()`` always produces the same
Authorization header, which is what the unit test vectors rely on.

References:
- https://docs.aws.amazon.com/AmazonS3/latest/API/sig-v4-header-based-auth.html
- https://docs.aws.amazon.com/general/latest/gr/sigv4-date-handling.html
"""

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import quote, unquote

ALGORITHM = "AWS4-HMAC-SHA256"
SERVICE = "s3"
SCOPE_TERMINATOR = "aws4_request"
SIGNED_HEADERS = "host;x-amz-content-sha256;x-amz-date"

EMPTY_PAYLOAD_HASH = hashlib.sha256(b"").hexdigest()


@dataclass(frozen=True, slots=True)
class SigningContext:
    """Per-request inputs to the signer. Never persisted."""

    bucket: str
    region: str
    access_key: str
    secret_key: str
    amz_date: str
    payload_hash: str = EMPTY_PAYLOAD_HASH

    @property
    def host(self) -> str:
        return f"{self.bucket}.s3.{self.region}.amazonaws.com"


@dataclass(frozen=True, slots=True)
class CanonicalRequest:
    method: str
    canonical_uri: str
    canonical_query_string: str
    canonical_headers: str
    signed_headers: str
    payload_hash: str

    def __str__(self) -> str:
        return "\n".join(
            [
                self.method,
                self.canonical_uri,
                self.canonical_query_string,
                self.canonical_headers,
                self.signed_headers,
                self.payload_hash,
            ]
        )

    def hexdigest(self) -> str:
        return _sha256_hex(str(self))


@dataclass(frozen=True, slots=True)
class SignedHeaders:
    """The headers a signed request must carry."""

    authorization: str
    amz_date: str
    content_sha256: str

    def as_dict(self) -> dict[str, str]:
        return {
            "Authorization": self.authorization,
            "x-amz-content-sha256": self.content_sha256,
            "x-amz-date": self.amz_date,
        }


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _hmac(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def amz_date(now: datetime | None = None) -> str:
    """Format *now* (default: the current UTC time) as ``YYYYMMDDTHHMMSSZ``."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime("%Y%m%dT%H%M%SZ")


def canonical_uri(path: str) -> str:
    """
    Decode *path* once and encode it once, keeping ``/`` separators.

    S3 expects each path segment URI-encoded a single time, unlike other
    services that take it encoded twice. Decoding first normalises clients
    that already encoded (or partially encoded) the path.
    """
    return quote(unquote(path), safe="/")


def credential_scope(date: str, region: str, service: str = SERVICE) -> str:
    return f"{date}/{region}/{service}/{SCOPE_TERMINATOR}"


def build_canonical_request(
    method: str, path: str, host: str, payload_hash: str, amz_date: str
) -> CanonicalRequest:
    canonical_headers = (
        f"host:{host}\n"
        f"x-amz-content-sha256:{payload_hash}\n"
        f"x-amz-date:{amz_date}\n"
    )
    return CanonicalRequest(
        method=method.upper(),
        canonical_uri=canonical_uri(path),
        canonical_query_string="",
        canonical_headers=canonical_headers,
        signed_headers=SIGNED_HEADERS,
        payload_hash=payload_hash,
    )


def string_to_sign(amz_date: str, scope: str, canonical_request_hash: str) -> str:
    return f"{ALGORITHM}\n{amz_date}\n{scope}\n{canonical_request_hash}"


def derive_signing_key(
    secret_key: str, date: str, region: str, service: str = SERVICE
) -> bytes:
    """
    Derive the SigV4 signing key.

    Each step keys the next HMAC with the raw digest of the previous one,
    never its hex form.
    """
    date_key = _hmac(f"AWS4{secret_key}".encode("utf-8"), date)
    region_key = _hmac(date_key, region)
    service_key = _hmac(region_key, service)
    return _hmac(service_key, SCOPE_TERMINATOR)


def sign(
    method: str,
    path: str,
    host: str,
    payload_hash: str,
    amz_date: str,
    region: str,
    access_key: str,
    secret_key: str,
) -> SignedHeaders:
    """Sign a bodiless S3 request and return the headers to attach to it."""
    canonical_request = build_canonical_request(
        method, path, host, payload_hash, amz_date
    )
    date = amz_date[:8]
    scope = credential_scope(date, region)
    to_sign = string_to_sign(amz_date, scope, canonical_request.hexdigest())
    signing_key = derive_signing_key(secret_key, date, region)
    signature = hmac.new(
        signing_key, to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()

    authorization = (
        f"{ALGORITHM} Credential={access_key}/{scope},"
        f"SignedHeaders={SIGNED_HEADERS},Signature={signature}"
    )
    return SignedHeaders(
        authorization=authorization, amz_date=amz_date, content_sha256=payload_hash
    )


def sign_with_context(method: str, path: str, context: SigningContext) -> SignedHeaders:
    return sign(
        method,
        path,
        context.host,
        context.payload_hash,
        context.amz_date,
        context.region,
        context.access_key,
        context.secret_key,
    )
