"""
Retrying, authenticated HTTP client shared by every provider adapter.

A unit of work is a callable that receives a ProviderSession (an
authenticated ``requests.Session`` bound to the provider base URL) and
returns a result. ``ProviderAPIClient.execute`` runs it in a bounded loop:

- every attempt builds a fresh session from the credential store, so a
  token refreshed mid-loop is always picked up
- failures are classified as transient, permanent, rate_limit or auth
- transient and rate-limit failures are retried with exponential backoff
  (rate-limit delays are multiplied) until the attempt ceiling
- an auth failure on the first attempt refreshes credentials and retries
  once; on any later attempt it fails
- permanent failures fail immediately

Callers either get the result or a ProviderAPIError subclass whose message
names the provider and, for exhausted retries, the attempt count.
"""

import time
from typing import Any, Callable, Dict, NamedTuple, Optional, TypeVar

import requests

from ..config import SyncConfig, get_config
from ..constants import ErrorKind, Provider
from ..exceptions import (
    BaseError,
    ProviderAPIError,
    ProviderAuthError,
    ProviderRetryExhaustedError,
)
from ..schemas.credential_schemas import ProviderCredentials
from ..schemas.integration_schemas import ConnectionTestResult
from ..utils.logger import get_logger
from ..utils.retry_utils import calculate_exponential_backoff

T = TypeVar("T")

RetryCallback = Callable[[int, ErrorKind, float], None]

RATE_LIMIT_WINDOW_SECONDS = 3600


class ClassifiedError(NamedTuple):
    kind: ErrorKind
    status_code: Optional[int]
    message: str


def extract_error_message(error: Exception) -> str:
    """Prefer the provider's own error message from a JSON body over the exception text."""
    response = getattr(error, "response", None)
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("message")
            if isinstance(message, str) and message:
                return message
            nested = body.get("error")
            if isinstance(nested, dict) and nested.get("message"):
                return str(nested["message"])
            if isinstance(nested, str) and nested:
                return nested
    return str(error)


def classify_error(error: Exception) -> ClassifiedError:
    """
    Classify a failed provider call.

    - HTTP 429 -> rate_limit
    - HTTP 401/403 -> auth
    - any other 4xx -> permanent
    - 5xx, timeouts, connection errors and anything unrecognized -> transient
    """
    response = getattr(error, "response", None)
    if isinstance(error, requests.HTTPError) and response is not None:
        status = response.status_code
        message = extract_error_message(error)
        if status == 429:
            return ClassifiedError(ErrorKind.RATE_LIMIT, status, message)
        if status in (401, 403):
            return ClassifiedError(ErrorKind.AUTH, status, message)
        if 400 <= status < 500:
            return ClassifiedError(ErrorKind.PERMANENT, status, message)
        return ClassifiedError(ErrorKind.TRANSIENT, status, message)

    if isinstance(error, requests.Timeout):
        return ClassifiedError(ErrorKind.TRANSIENT, None, "Network timeout")

    return ClassifiedError(ErrorKind.TRANSIENT, None, str(error) or type(error).__name__)


class ProviderSession:
    """Authenticated HTTP session bound to one provider base URL."""

    def __init__(self, http: requests.Session, base_url: str, timeout: float):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        """Issue a request and raise requests.HTTPError on a non-2xx status."""
        kwargs.setdefault("timeout", self.timeout)
        response = self.http.request(method, self.url(path), **kwargs)
        response.raise_for_status()
        return response

    def get(self, path: str, **kwargs: Any) -> requests.Response:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> requests.Response:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> requests.Response:
        return self.request("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> requests.Response:
        return self.request("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> requests.Response:
        return self.request("DELETE", path, **kwargs)

    def get_json(self, path: str, **kwargs: Any) -> Any:
        return _json_or_empty(self.get(path, **kwargs))

    def post_json(self, path: str, payload: Any, **kwargs: Any) -> Any:
        return _json_or_empty(self.post(path, json=payload, **kwargs))

    def put_json(self, path: str, payload: Any = None, **kwargs: Any) -> Any:
        return _json_or_empty(self.put(path, json=payload, **kwargs))

    def patch_json(self, path: str, payload: Any, **kwargs: Any) -> Any:
        return _json_or_empty(self.patch(path, json=payload, **kwargs))


def _json_or_empty(response: requests.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {}


class ProviderAPIClient:
    """
    Base API client for one provider.

    Subclasses set ``provider`` and ``base_url`` and may override
    ``get_base_url``, ``authenticate`` and ``connection_check``.
    """

    provider: Provider
    base_url: str = ""

    def __init__(
        self,
        credentials,
        http_factory: Callable[[], requests.Session] = requests.Session,
        sleep: Callable[[float], None] = time.sleep,
        counters=None,
        sync_config: Optional[SyncConfig] = None,
    ):
        """
        Args:
            credentials: CredentialService for this provider
            http_factory: Builds the HTTP session used for each attempt
            sleep: Called with the backoff delay between attempts
            counters: Optional KeyedCounterService recording rate-limit hits
            sync_config: Retry settings (default: global config)
        """
        self.credentials = credentials
        self.http_factory = http_factory
        self.sleep = sleep
        self.counters = counters
        self._sync_config = sync_config
        self.logger = get_logger()

    @property
    def sync_config(self) -> SyncConfig:
        return self._sync_config or get_config().sync

    @property
    def display_name(self) -> str:
        return self.provider.display_name

    # ==================== SESSION ====================

    def get_base_url(self, credentials: ProviderCredentials) -> str:
        return self.base_url

    def authenticate(self, http: requests.Session, credentials: ProviderCredentials) -> None:
        http.headers["Authorization"] = f"Bearer {credentials.access_token}"

    def build_session(self, tenant_id: str) -> ProviderSession:
        """Fresh authenticated session using currently valid credentials."""
        credentials = self.credentials.get_valid_credentials(tenant_id)
        http = self.http_factory()
        http.headers.update({"Content-Type": "application/json", "Accept": "application/json"})
        self.authenticate(http, credentials)
        return ProviderSession(
            http, self.get_base_url(credentials), self.sync_config.request_timeout
        )

    # ==================== RETRY LOOP ====================

    def calculate_delay(self, attempt: int, kind: ErrorKind) -> float:
        """
        Backoff before the attempt after ``attempt``.

        ``base_delay * 2 ** (attempt - 1)``, multiplied for rate-limit
        failures, plus uniform jitter.
        """
        config = self.sync_config
        base_delay = config.base_delay
        if kind == ErrorKind.RATE_LIMIT:
            base_delay *= config.rate_limit_multiplier
        return calculate_exponential_backoff(
            attempt, base_delay=base_delay, multiplier=2.0, jitter=config.max_jitter
        )

    def auth_failure_message(self, refresh_error: BaseError) -> str:
        return refresh_error.message

    def refresh_credentials(self, tenant_id: str) -> None:
        self.credentials.refresh_tokens(tenant_id)

    def execute(
        self,
        tenant_id: str,
        operation: Callable[[ProviderSession], T],
        on_retry: Optional[RetryCallback] = None,
        description: Optional[str] = None,
    ) -> T:
        """
        Run ``operation`` with retry, backoff and one-shot auth refresh.

        Args:
            tenant_id: Tenant whose credentials authenticate the call
            operation: Unit of work receiving a fresh ProviderSession
            on_retry: Called with (attempt, kind, delay) before each backoff sleep
            description: Short label for logs

        Raises:
            ProviderAPIError: Permanent failure
            ProviderAuthError: Credentials rejected and not recoverable
            ProviderRetryExhaustedError: Retryable failure on the final attempt
            CredentialNotFoundError: The tenant is not connected
        """
        max_attempts = self.sync_config.max_attempts
        description = description or getattr(operation, "__name__", "request")
        attempt = 0

        while True:
            attempt += 1
            api = self.build_session(tenant_id)
            try:
                return operation(api)
            except BaseError:
                raise
            except Exception as e:
                classified = classify_error(e)
                context = {
                    "tenant_id": tenant_id,
                    "provider": self.provider.value,
                    "operation": description,
                    "attempt": attempt,
                    "error_kind": classified.kind.value,
                    "http_status": classified.status_code,
                }

                if classified.kind == ErrorKind.AUTH:
                    if attempt == 1:
                        self.logger.warning(
                            f"{self.display_name} rejected credentials, refreshing", extra=context
                        )
                        try:
                            self.refresh_credentials(tenant_id)
                        except BaseError as refresh_error:
                            raise ProviderAuthError(
                                self.auth_failure_message(refresh_error),
                                provider=self.provider.value,
                                error_kind=classified.kind.value,
                                http_status=classified.status_code,
                                attempts=attempt,
                                cause=refresh_error,
                            ) from refresh_error
                        continue
                    raise ProviderAuthError(
                        f"{self.display_name} API authentication failed after {attempt} attempts: "
                        f"{classified.message}",
                        provider=self.provider.value,
                        error_kind=classified.kind.value,
                        http_status=classified.status_code,
                        attempts=attempt,
                        cause=e,
                    ) from e

                if classified.kind == ErrorKind.PERMANENT:
                    raise ProviderAPIError(
                        f"{self.display_name} API error: {classified.message}",
                        provider=self.provider.value,
                        error_kind=classified.kind.value,
                        http_status=classified.status_code,
                        attempts=attempt,
                        cause=e,
                    ) from e

                if attempt >= max_attempts:
                    raise ProviderRetryExhaustedError(
                        f"{self.display_name} API failed after {attempt} attempts: "
                        f"{classified.message}",
                        provider=self.provider.value,
                        error_kind=classified.kind.value,
                        http_status=classified.status_code,
                        attempts=attempt,
                        cause=e,
                    ) from e

                delay = self.calculate_delay(attempt, classified.kind)
                if classified.kind == ErrorKind.RATE_LIMIT and self.counters is not None:
                    self.counters.hit(
                        f"rate-limit:{tenant_id}:{self.provider.value}",
                        None,
                        RATE_LIMIT_WINDOW_SECONDS,
                    )
                self.logger.warning(
                    f"{self.display_name} call failed, retrying in {delay:.2f}s",
                    extra={**context, "delay": round(delay, 3), "error_message": classified.message},
                )
                if on_retry is not None:
                    on_retry(attempt, classified.kind, delay)
                self.sleep(delay)

    # ==================== CONNECTION TEST ====================

    def connection_check(self, api: ProviderSession) -> Dict[str, Any]:
        raise NotImplementedError

    def connection_message(self, result: Dict[str, Any]) -> str:
        return f"Connected to {self.display_name}"

    def test_connection(self, tenant_id: str) -> ConnectionTestResult:
        """Check the connection with the tenant's credentials; never raises."""
        try:
            result = self.execute(tenant_id, self.connection_check, description="test_connection")
        except BaseError as e:
            return ConnectionTestResult(
                success=False, message=f"Failed to connect to {self.display_name}: {e.message}"
            )
        return ConnectionTestResult(success=True, message=self.connection_message(result))
