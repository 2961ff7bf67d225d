"""
Credential store for provider integrations.

Holds one encrypted credential set per (tenant, provider) in the
``integrations`` table and keeps it usable:

- OAuth authorization-code exchange and refresh through an OAuthProvider
- API-key storage for key-based providers (Greenhouse)
- Transparent refresh of tokens that expire within the refresh buffer
- Status bookkeeping (connected / error / disconnected) with the last error

Plaintext credentials only exist in memory for the duration of one call.
"""

from typing import Any, Dict, Optional

import requests
from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..config import get_config
from ..constants import IntegrationStatus, Provider
from ..context.operation_context import operation
from ..db.db_base import utc_now
from ..db.db_integration_models import Integration
from ..exceptions import (
    BaseError,
    CredentialError,
    CredentialExpiredError,
    CredentialNotFoundError,
    ValidationError,
)
from ..providers.oauth import OAuthProvider, encode_state
from ..schemas.credential_schemas import ProviderCredentials, TokenInfo
from ..utils.crypto_utils import decrypt_object, encrypt_object
from .base_service import BaseService

MAX_REFRESHES = 1


def describe_http_error(error: Exception) -> str:
    """Best human-readable message for a failed provider HTTP call."""
    response = getattr(error, "response", None)
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            for key in ("error_description", "message", "error"):
                value = body.get(key)
                if isinstance(value, str) and value:
                    return value
                if isinstance(value, dict) and value.get("message"):
                    return str(value["message"])
    return str(error)


class CredentialService(BaseService):
    """Credential store for one provider."""

    def __init__(
        self,
        session: Optional[Session],
        provider: str,
        oauth: Optional[OAuthProvider] = None,
        http: Optional[requests.Session] = None,
    ):
        """
        Args:
            session: Database session
            provider: Provider identifier (see constants.Provider)
            oauth: OAuth flow for OAuth-based providers; None for API-key providers
            http: HTTP session used for token endpoint calls
        """
        super().__init__(session)
        self.provider = Provider(provider)
        self.oauth = oauth
        self.http = http or requests.Session()

    @property
    def display_name(self) -> str:
        return self.provider.display_name

    # ==================== RECORD ACCESS ====================

    def get_integration(self, tenant_id: str) -> Optional[Integration]:
        return (
            self.session.query(Integration)
            .filter(
                and_(
                    Integration.tenant_id == tenant_id,
                    Integration.provider == self.provider.value,
                )
            )
            .first()
        )

    def _upsert(self, tenant_id: str, **fields: Any) -> Integration:
        integration = self.get_integration(tenant_id)
        if integration is None:
            integration = Integration(
                tenant_id=tenant_id,
                provider=self.provider.value,
                status=IntegrationStatus.PENDING.value,
                settings={},
            )
            self.session.add(integration)
        for name, value in fields.items():
            setattr(integration, name, value)
        self._commit(f"{self.provider.value}_credential_upsert")
        return integration

    def get_settings(self, tenant_id: str) -> Dict[str, Any]:
        integration = self.get_integration(tenant_id)
        return dict(integration.settings or {}) if integration else {}

    def update_settings(self, tenant_id: str, **settings: Any) -> Dict[str, Any]:
        merged = {**self.get_settings(tenant_id), **settings}
        self._upsert(tenant_id, settings=merged)
        return merged

    def mark_error(self, tenant_id: str, message: str) -> None:
        self._upsert(tenant_id, status=IntegrationStatus.ERROR.value, last_error=message)

    def mark_synced(self, tenant_id: str) -> None:
        integration = self.get_integration(tenant_id)
        if integration is not None:
            integration.last_synced_at = utc_now()
            self._commit(f"{self.provider.value}_mark_synced")

    # ==================== CREDENTIALS ====================

    def save_credentials(
        self,
        tenant_id: str,
        credentials: ProviderCredentials,
        settings: Optional[Dict[str, Any]] = None,
    ) -> Integration:
        """Encrypt and store a credential set, marking the integration connected."""
        fields: Dict[str, Any] = {
            "tokens": encrypt_object(credentials.model_dump(mode="json", exclude_none=True)),
            "status": IntegrationStatus.CONNECTED.value,
            "last_error": None,
        }
        if settings:
            fields["settings"] = {**self.get_settings(tenant_id), **settings}
        return self._upsert(tenant_id, **fields)

    def get_credentials(self, tenant_id: str) -> ProviderCredentials:
        """
        Decrypt the stored credential set.

        Raises:
            CredentialNotFoundError: If the tenant never connected or was disconnected
        """
        integration = self.get_integration(tenant_id)
        if integration is None or not integration.tokens:
            raise CredentialNotFoundError(
                f"{self.display_name} not connected",
                tenant_id=tenant_id,
                provider=self.provider.value,
            )
        return ProviderCredentials.model_validate(decrypt_object(integration.tokens))

    @operation()
    def store_api_key(
        self, tenant_id: str, api_key: str, on_behalf_of_user_id: Optional[str] = None
    ) -> Integration:
        """Store an API key credential (key-based providers)."""
        if not api_key or not api_key.strip():
            raise ValidationError("API key must be a non-empty string", field="api_key")

        credentials = ProviderCredentials(
            api_key=api_key.strip(), on_behalf_of_user_id=on_behalf_of_user_id or None
        )
        integration = self.save_credentials(tenant_id, credentials)
        self.logger.info(
            f"{self.display_name} API key stored",
            extra={"tenant_id": tenant_id, "provider": self.provider.value},
        )
        return integration

    # ==================== OAUTH ====================

    def _require_oauth(self) -> OAuthProvider:
        if self.oauth is None:
            raise CredentialError(
                f"{self.display_name} does not use OAuth", provider=self.provider.value
            )
        return self.oauth

    def get_auth_url(self, tenant_id: str, **settings: Any) -> str:
        """Authorization URL carrying a signed state that identifies the tenant."""
        oauth = self._require_oauth()
        merged = {**self.get_settings(tenant_id), **{k: v for k, v in settings.items() if v}}
        return oauth.build_authorization_url(encode_state(tenant_id, self.provider.value), merged)

    @operation()
    def exchange_code(self, tenant_id: str, code: str, **extra: Any) -> ProviderCredentials:
        """
        Exchange an authorization code for tokens and store them.

        Args:
            tenant_id: Tenant completing the authorization
            code: Authorization code from the provider redirect
            **extra: Provider-specific values, e.g. tenantUrl or companyDomain

        Raises:
            CredentialError: If the exchange fails; the integration is left in
                ``error`` status with the failure reason
        """
        oauth = self._require_oauth()
        settings = {**self.get_settings(tenant_id), **{k: v for k, v in extra.items() if v}}
        timeout = get_config().sync.request_timeout

        try:
            connection_settings = oauth.connection_settings(settings)
            token = oauth.request_token(
                self.http, oauth.authorization_code_grant(code), settings, timeout
            )
        except (requests.RequestException, BaseError, ValueError) as e:
            message = describe_http_error(e) if not isinstance(e, BaseError) else e.message
            self.mark_error(tenant_id, f"OAuth failed: {message}")
            raise CredentialError(
                f"{self.display_name} OAuth failed: {message}",
                cause=e,
                tenant_id=tenant_id,
                provider=self.provider.value,
            ) from e

        credentials = token.to_credentials().model_copy(
            update=_credential_fields(connection_settings)
        )
        self.save_credentials(tenant_id, credentials, settings=connection_settings)
        self.logger.info(
            f"{self.display_name} connected",
            extra={"tenant_id": tenant_id, "provider": self.provider.value},
        )
        return credentials

    @operation()
    def refresh_tokens(self, tenant_id: str) -> ProviderCredentials:
        """
        Refresh the access token with the stored refresh token.

        API-key credentials have nothing to refresh and are returned as-is.
        A refresh failure is terminal: the integration moves to ``error`` and
        the tenant has to reconnect.

        Raises:
            CredentialNotFoundError: If the tenant is not connected
            CredentialError: If there is no refresh token or the refresh fails
        """
        credentials = self.get_credentials(tenant_id)
        if credentials.uses_api_key or self.oauth is None:
            return credentials
        if not credentials.refresh_token:
            raise CredentialError(
                "No refresh token available", tenant_id=tenant_id, provider=self.provider.value
            )

        settings = self.get_settings(tenant_id)
        timeout = get_config().sync.request_timeout
        try:
            token = self.oauth.request_token(
                self.http, self.oauth.refresh_token_grant(credentials), settings, timeout
            )
        except (requests.RequestException, BaseError, ValueError) as e:
            message = describe_http_error(e) if not isinstance(e, BaseError) else e.message
            self.mark_error(tenant_id, f"Token refresh failed: {message}")
            raise CredentialError(
                f"{self.display_name} token refresh failed: {message}",
                cause=e,
                tenant_id=tenant_id,
                provider=self.provider.value,
            ) from e

        refreshed = token.to_credentials(previous=credentials)
        self.save_credentials(tenant_id, refreshed)
        self.logger.info(
            f"{self.display_name} tokens refreshed",
            extra={"tenant_id": tenant_id, "provider": self.provider.value},
        )
        return refreshed

    def get_valid_credentials(self, tenant_id: str) -> ProviderCredentials:
        """
        Return credentials that stay valid for at least the refresh buffer.

        Refreshes at most once, then re-checks.

        Raises:
            CredentialExpiredError: If the token is still expiring after a refresh
        """
        buffer_seconds = get_config().sync.token_refresh_buffer
        credentials = self.get_credentials(tenant_id)
        refreshes = 0
        while credentials.expires_within(buffer_seconds):
            if refreshes >= MAX_REFRESHES:
                raise CredentialExpiredError(
                    f"{self.display_name} token is still expired after refresh",
                    tenant_id=tenant_id,
                    provider=self.provider.value,
                )
            credentials = self.refresh_tokens(tenant_id)
            refreshes += 1
        return credentials

    def get_valid_token(self, tenant_id: str) -> str:
        credentials = self.get_valid_credentials(tenant_id)
        return credentials.access_token or credentials.api_key

    # ==================== STATUS ====================

    def is_connected(self, tenant_id: str) -> bool:
        integration = self.get_integration(tenant_id)
        return bool(
            integration
            and integration.status == IntegrationStatus.CONNECTED.value
            and integration.tokens
        )

    def get_token_info(self, tenant_id: str) -> TokenInfo:
        """Validity of the stored token, without refreshing it."""
        try:
            credentials = self.get_credentials(tenant_id)
        except CredentialNotFoundError:
            return TokenInfo(valid=False)
        return TokenInfo(valid=not credentials.is_expired(), expires_at=credentials.expires_at)

    @operation()
    def disconnect(self, tenant_id: str) -> None:
        """Forget the stored credentials and mark the integration disconnected."""
        integration = self.get_integration(tenant_id)
        if integration is None:
            return
        integration.tokens = None
        integration.status = IntegrationStatus.DISCONNECTED.value
        self._commit(f"{self.provider.value}_disconnect")
        self.logger.info(
            f"{self.display_name} disconnected",
            extra={"tenant_id": tenant_id, "provider": self.provider.value},
        )


def _credential_fields(connection_settings: Dict[str, Any]) -> Dict[str, Any]:
    fields = {}
    if connection_settings.get("tenantUrl"):
        fields["tenant_url"] = connection_settings["tenantUrl"]
    if connection_settings.get("companyDomain"):
        fields["company_domain"] = connection_settings["companyDomain"]
    return fields
