"""uhttp - JSON HTTP client helpers and a body-logging ASGI middleware."""

from uhttp.client import (
    BodyReadError,
    BodyReadTimeout,
    ClientError,
    DecodeError,
    JsonClient,
    RequestBuildError,
    RequestTimeout,
    StatusError,
    TransportError,
    default_client,
    get,
    get_auth,
    post,
    post_auth,
    post_form,
    set_client,
)
from uhttp.log import RawJSON, configure_logging, get_logger
from uhttp.middleware import BodyLogMiddleware
from uhttp.models import ClientConfig, LoggingConfig, UHttpConfig

__all__ = [
    "BodyLogMiddleware",
    "BodyReadError",
    "BodyReadTimeout",
    "ClientConfig",
    "ClientError",
    "DecodeError",
    "JsonClient",
    "LoggingConfig",
    "RawJSON",
    "RequestBuildError",
    "RequestTimeout",
    "StatusError",
    "TransportError",
    "UHttpConfig",
    "configure_logging",
    "default_client",
    "get",
    "get_auth",
    "get_logger",
    "post",
    "post_auth",
    "post_form",
    "set_client",
]
