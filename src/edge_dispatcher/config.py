import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping, Protocol

from aws_lambda_powertools.utilities import parameters

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CREDENTIAL_KEYS = ("bucket_name", "aws_region", "aws_access_key", "aws_secret_key")


@dataclass(frozen=True, slots=True)
class AssetBackendConfig:
    """Identifies the storage backend and the named credential store for it."""

    backend_id: str
    credentials_ref: str


@dataclass(frozen=True, slots=True)
class S3Credentials:
    bucket_name: str
    aws_region: str
    aws_access_key: str
    aws_secret_key: str

    @property
    def host(self) -> str:
        return f"{self.bucket_name}.s3.{self.aws_region}.amazonaws.com"

    def __repr__(self) -> str:
        # Keep keys out of logs and tracebacks.
        return (
            f"S3Credentials(bucket_name={self.bucket_name!r}, "
            f"aws_region={self.aws_region!r}, aws_access_key='***', aws_secret_key='***')"
        )


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration loaded from environment variables."""

    # --- Required Variables ---
    service_name: str
    environment: str

    # --- Optional Variables with Defaults ---
    log_level: str
    asset_manifest_url: str
    asset_backend: str
    asset_credentials: str
    asset_backend_url: str | None
    credential_store: str
    backend_timeout_seconds: float
    pop: str
    app_handler: str

    # --- Derived Properties ---
    @property
    def backend_config(self) -> AssetBackendConfig:
        return AssetBackendConfig(
            backend_id=self.asset_backend, credentials_ref=self.asset_credentials
        )

    @property
    def backend_origins(self) -> dict[str, str]:
        if not self.asset_backend_url:
            return {}
        return {self.asset_backend: self.asset_backend_url}

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Loads configuration from environment variables, performing validation and type casting.
        Fails fast with a ConfigurationError if anything is invalid.
        """
        try:
            # --- Handle required string variables ---
            service_name = os.environ["SERVICE_NAME"]
            environment = os.environ["ENVIRONMENT"]

            # --- Handle optional variables with validation ---
            asset_manifest_url = os.getenv("ASSET_MANIFEST_URL", "/build/manifest.js")
            if not asset_manifest_url.startswith("/"):
                raise ValueError("ASSET_MANIFEST_URL must be an absolute path.")

            asset_backend = os.getenv("ASSET_BACKEND", "s3_backend")
            asset_credentials = os.getenv("ASSET_CREDENTIALS", "s3_config")
            asset_backend_url = os.getenv("ASSET_BACKEND_URL") or None
            if asset_backend_url and not asset_backend_url.startswith(
                ("http://", "https://")
            ):
                raise ValueError("ASSET_BACKEND_URL must be an http(s) URL.")

            credential_store = os.getenv("CREDENTIAL_STORE", "env").lower()
            if credential_store not in CREDENTIAL_STORES:
                raise ValueError(
                    f"CREDENTIAL_STORE must be one of {sorted(CREDENTIAL_STORES)}, "
                    f"not '{credential_store}'"
                )

            backend_timeout_seconds = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "10"))
            if backend_timeout_seconds <= 0:
                raise ValueError("BACKEND_TIMEOUT_SECONDS must be a positive number.")

            pop = os.getenv("EDGE_POP") or os.getenv("AWS_REGION") or "unknown"

            app_handler = os.getenv("APP_HANDLER", "edge_dispatcher.demo:handle_request")
            if ":" not in app_handler:
                raise ValueError("APP_HANDLER must look like 'package.module:callable'.")

            # --- Handle special-case variables like log level ---
            log_level = os.getenv("LOG_LEVEL", "INFO").upper()
            allowed_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
            if log_level not in allowed_log_levels:
                raise ValueError(
                    f"LOG_LEVEL must be one of {allowed_log_levels}, not '{log_level}'"
                )

        except KeyError as e:
            raise ConfigurationError(
                f"Missing required environment variable: {e.args[0]}"
            ) from e
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid value for an environment variable: {e}"
            ) from e

        return cls(
            service_name=service_name,
            environment=environment,
            log_level=log_level,
            asset_manifest_url=asset_manifest_url,
            asset_backend=asset_backend,
            asset_credentials=asset_credentials,
            asset_backend_url=asset_backend_url,
            credential_store=credential_store,
            backend_timeout_seconds=backend_timeout_seconds,
            pop=pop,
            app_handler=app_handler,
        )


# --- Credential Stores ---


class CredentialStore(Protocol):
    """A named key/value source, the Python stand-in for an edge dictionary."""

    def get(self, name: str) -> Mapping[str, str]: ...


class StaticCredentialStore:
    """In-memory store, used for local runs and tests."""

    def __init__(self, stores: Mapping[str, Mapping[str, str]]):
        self._stores = {name: dict(values) for name, values in stores.items()}

    def get(self, name: str) -> Mapping[str, str]:
        return self._stores.get(name, {})


class EnvCredentialStore:
    """
    Reads ``<NAME>_<KEY>`` environment variables, so the store ``s3_config``
    exposes ``bucket_name`` as ``S3_CONFIG_BUCKET_NAME``.
    """

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = os.environ if environ is None else environ

    def get(self, name: str) -> Mapping[str, str]:
        prefix = f"{name.upper()}_"
        return {
            key: self._environ[prefix + key.upper()]
            for key in CREDENTIAL_KEYS
            if prefix + key.upper() in self._environ
        }


class SSMCredentialStore:
    """Reads the parameters under the SSM path ``/<name>/``, decrypting SecureStrings."""

    def __init__(self, max_age: int = 300):
        self._max_age = max_age

    def get(self, name: str) -> Mapping[str, str]:
        values = parameters.get_parameters(
            f"/{name}", decrypt=True, max_age=self._max_age
        )
        return {key.strip("/"): str(value) for key, value in values.items()}


CREDENTIAL_STORES = {
    "env": EnvCredentialStore,
    "ssm": SSMCredentialStore,
}


def build_credential_store(kind: str) -> CredentialStore:
    try:
        return CREDENTIAL_STORES[kind]()
    except KeyError as e:
        raise ConfigurationError(f"Unknown credential store: {kind}") from e


def load_s3_credentials(store: CredentialStore, name: str) -> S3Credentials:
    """
    Read the bucket configuration from the named store.
    Fails fast with a ConfigurationError if a key is missing or empty.
    """
    values = store.get(name)
    missing = [key for key in CREDENTIAL_KEYS if not values.get(key)]
    if missing:
        raise ConfigurationError(
            f"Credential store '{name}' is missing keys: {', '.join(missing)}",
            context={"store": name, "missing": missing},
        )
    logger.debug(
        "Loaded object storage configuration",
        extra={"store": name, "bucket": values["bucket_name"], "region": values["aws_region"]},
    )
    return S3Credentials(**{key: values[key] for key in CREDENTIAL_KEYS})


# --- Singleton Factory Function (Lazy-loaded and Cached) ---
@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """
    Loads the application configuration from environment variables.
    The result is cached using lru_cache, so the environment is only read once
    on the first call. This avoids import-time side effects.
    """
    logger.info("Loading application configuration from environment...")
    return AppConfig.load_from_env()
