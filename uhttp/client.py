"""JSON client - one synchronous HTTP request per call, JSON response decoded.

Every operation follows the same sequence: build the request, send it once,
require status 200, read the whole body, log it at debug level as raw JSON,
decode it with pydantic. The first failing step is logged at error level and
raised as a ClientError subclass. Nothing is retried.

Usage:
    with JsonClient(ClientConfig(timeout_seconds=10)) as client:
        widget = client.get("http://api.local/widgets/1", Widget)

Or through the process-wide default client:
    uhttp.set_client(10, 20)
    widget = uhttp.get("http://api.local/widgets/1", Widget)
"""

from __future__ import annotations

import functools
from collections.abc import Mapping, Sequence
from threading import Lock
from typing import Any, Union

import httpx
from pydantic import TypeAdapter, ValidationError

from uhttp.log import RawJSON, get_logger
from uhttp.models import ClientConfig

JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

FormData = Union[Mapping[str, Union[str, Sequence[str]]], Sequence[tuple[str, str]]]


class ClientError(Exception):
    """Base class for client errors."""


class RequestBuildError(ClientError):
    """Raised when the request cannot be constructed (malformed URL, bad auth values)."""


class TransportError(ClientError):
    """Raised when the request fails on the wire (refused, DNS, protocol error)."""


class RequestTimeout(TransportError):
    """Raised when the request exceeds the client timeout."""


class StatusError(ClientError):
    """Raised when the response status is anything other than 200."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"response status {status_code} is not 200")
        self.status_code = status_code


class BodyReadError(ClientError):
    """Raised when the response body cannot be read completely."""


class BodyReadTimeout(BodyReadError, RequestTimeout):
    """Raised when the client timeout expires while the body is streaming."""


class DecodeError(ClientError):
    """Raised when the body is not valid JSON or does not fit the target type."""


@functools.lru_cache(maxsize=256)
def _cached_type_adapter(model: Any) -> TypeAdapter[Any]:
    return TypeAdapter(model)


def _type_adapter(model: Any) -> TypeAdapter[Any]:
    """TypeAdapter for model, cached when model is hashable."""
    try:
        hash(model)
    except TypeError:
        # e.g. Annotated[list, {"a": 1}]
        return TypeAdapter(model)
    return _cached_type_adapter(model)


def _form_fields(data: FormData) -> dict[str, list[str]]:
    """Normalize form input to {name: [values...]}, keeping value order per name."""
    fields: dict[str, list[str]] = {}
    items = data.items() if isinstance(data, Mapping) else data
    for key, value in items:
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            fields.setdefault(key, []).append(value)
        else:
            fields.setdefault(key, []).extend(value)
    return fields


def _encode_body(body: bytes | str) -> bytes:
    if isinstance(body, str):
        return body.encode("utf-8")
    return body


class JsonClient:
    """HTTP client whose operations return decoded JSON.

    The underlying httpx.Client is safe to share between threads for sending
    requests. configure() swaps it out and must not race with in-flight calls.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        logger: Any = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Timeout and pool settings. Defaults to ClientConfig().
            logger: structlog-style logger used when a call does not pass one.
            transport: Custom httpx transport (tests use httpx.MockTransport).
                       When set, max_idle_connections has no effect.
        """
        self._config = config or ClientConfig()
        self._logger = logger or get_logger("uhttp.client")
        self._transport = transport
        self._http = self._build_http_client()

    @classmethod
    def from_config(cls, config: ClientConfig, logger: Any = None) -> "JsonClient":
        return cls(config=config, logger=logger)

    def __enter__(self) -> "JsonClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying httpx client and its connection pool."""
        self._http.close()

    @property
    def config(self) -> ClientConfig:
        return self._config

    def configure(self, timeout_seconds: int, max_idle_connections: int) -> None:
        """Apply a new timeout (seconds) and idle-connection limit.

        Takes effect for every later request on this client. Values are passed
        to httpx unchecked.
        """
        self._config = ClientConfig(
            timeout_seconds=timeout_seconds,
            max_idle_connections=max_idle_connections,
        )
        old_http = self._http
        self._http = self._build_http_client()
        # An injected transport is shared with the new client; closing the old
        # client would close it too.
        if self._transport is None:
            old_http.close()

    def _build_http_client(self) -> httpx.Client:
        kwargs: dict[str, Any] = {
            "timeout": httpx.Timeout(self._config.timeout_seconds),
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        else:
            kwargs["limits"] = httpx.Limits(
                max_connections=None,
                max_keepalive_connections=self._config.max_idle_connections,
            )
        return httpx.Client(**kwargs)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get(self, url: str, model: Any = Any, *, logger: Any = None) -> Any:
        """GET url and decode the JSON response as ``model``."""
        return self._request("get", "GET", url, model=model, logger=logger)

    def get_auth(
        self,
        url: str,
        username: str,
        password: str,
        model: Any = Any,
        *,
        logger: Any = None,
    ) -> Any:
        """GET url with HTTP Basic credentials."""
        return self._request(
            "get_auth", "GET", url, model=model, auth=(username, password), logger=logger
        )

    def post(
        self,
        url: str,
        body: bytes | str,
        model: Any = Any,
        *,
        logger: Any = None,
    ) -> Any:
        """POST a JSON payload (sent as-is) and decode the JSON response."""
        return self._request(
            "post",
            "POST",
            url,
            model=model,
            content=_encode_body(body),
            headers={"Content-Type": JSON_CONTENT_TYPE},
            logger=logger,
        )

    def post_auth(
        self,
        url: str,
        username: str,
        password: str,
        body: bytes | str,
        model: Any = Any,
        *,
        logger: Any = None,
    ) -> Any:
        """POST a JSON payload with HTTP Basic credentials."""
        return self._request(
            "post_auth",
            "POST",
            url,
            model=model,
            content=_encode_body(body),
            headers={"Content-Type": JSON_CONTENT_TYPE},
            auth=(username, password),
            logger=logger,
        )

    def post_form(
        self,
        url: str,
        data: FormData,
        model: Any = Any,
        *,
        logger: Any = None,
    ) -> Any:
        """POST form fields as application/x-www-form-urlencoded.

        ``data`` maps names to a value or a list of values, or is a sequence
        of (name, value) pairs. Repeated names keep their value order.
        """
        return self._request(
            "post_form",
            "POST",
            url,
            model=model,
            data=_form_fields(data),
            headers={"Content-Type": FORM_CONTENT_TYPE},
            logger=logger,
        )

    # ------------------------------------------------------------------
    # Request pipeline
    # ------------------------------------------------------------------

    def _request(
        self,
        op: str,
        method: str,
        url: str,
        *,
        model: Any,
        content: bytes | None = None,
        data: dict[str, list[str]] | None = None,
        headers: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
        logger: Any = None,
    ) -> Any:
        """Send one request and decode the body.

        Raises:
            RequestBuildError: URL, headers or credentials are unusable.
            TransportError: Connection failed or timed out (RequestTimeout).
            StatusError: Status other than 200. The body is not read.
            BodyReadError: Body stream failed midway. A timeout while
                reading raises BodyReadTimeout, which is also a RequestTimeout.
            DecodeError: Body is not JSON or does not match ``model``.
        """
        log = logger or self._logger

        try:
            request = self._http.build_request(
                method, url, content=content, data=data, headers=headers
            )
            basic_auth = httpx.BasicAuth(*auth) if auth is not None else None
        except (httpx.InvalidURL, TypeError, ValueError) as e:
            log.error("req_err", op=op, url=url, error=str(e))
            raise RequestBuildError(f"{op}: cannot build request for {url!r}: {e}") from e

        try:
            response = self._http.send(request, auth=basic_auth, stream=True)
        except httpx.TimeoutException as e:
            log.error("resp_err", op=op, url=url, error=str(e))
            raise RequestTimeout(f"{op}: request timeout: {e}") from e
        except httpx.RequestError as e:
            log.error("resp_err", op=op, url=url, error=str(e))
            raise TransportError(f"{op}: request error: {e}") from e

        try:
            if response.status_code != 200:
                status_error = StatusError(response.status_code)
                log.error(
                    "status_not_200",
                    op=op,
                    url=url,
                    status_code=response.status_code,
                    error=str(status_error),
                )
                raise status_error

            try:
                body = response.read()
            except httpx.TimeoutException as e:
                log.error("read_err", op=op, url=url, error=str(e))
                raise BodyReadTimeout(f"{op}: response body timeout: {e}") from e
            except httpx.RequestError as e:
                log.error("read_err", op=op, url=url, error=str(e))
                raise BodyReadError(f"{op}: reading response body failed: {e}") from e
        finally:
            response.close()

        log.debug("resp_body", op=op, body=RawJSON(body))

        try:
            return _type_adapter(model).validate_json(body)
        except ValidationError as e:
            log.error("decode_err", op=op, url=url, error=str(e))
            raise DecodeError(f"{op}: cannot decode response body: {e}") from e


# =============================================================================
# Process-wide default client
# =============================================================================


_default_client: JsonClient | None = None
_default_client_lock = Lock()


def default_client() -> JsonClient:
    """Return the shared client, creating it with default settings on first use."""
    global _default_client
    with _default_client_lock:
        if _default_client is None:
            _default_client = JsonClient()
        return _default_client


def set_client(timeout_seconds: int, max_idle_connections: int) -> None:
    """Configure the shared client. Call once at startup, before concurrent traffic."""
    default_client().configure(timeout_seconds, max_idle_connections)


def get(url: str, model: Any = Any, *, logger: Any = None) -> Any:
    return default_client().get(url, model, logger=logger)


def get_auth(
    url: str, username: str, password: str, model: Any = Any, *, logger: Any = None
) -> Any:
    return default_client().get_auth(url, username, password, model, logger=logger)


def post(url: str, body: bytes | str, model: Any = Any, *, logger: Any = None) -> Any:
    return default_client().post(url, body, model, logger=logger)


def post_auth(
    url: str,
    username: str,
    password: str,
    body: bytes | str,
    model: Any = Any,
    *,
    logger: Any = None,
) -> Any:
    return default_client().post_auth(url, username, password, body, model, logger=logger)


def post_form(url: str, data: FormData, model: Any = Any, *, logger: Any = None) -> Any:
    return default_client().post_form(url, data, model, logger=logger)
