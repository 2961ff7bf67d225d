"""
OAuth 2.0 authorization-code flows of the OAuth-based providers.

Each provider strategy knows its authorize/token endpoints, its scopes, how
the client authenticates against the token endpoint, and which
provider-specific values (Workday tenant URL, BambooHR company domain) must
travel with the tokens. The CredentialService drives the flow and persists
the results.
"""

import base64
import hashlib
import hmac
import secrets
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from ..config import OAuthClientConfig, get_config
from ..constants import Provider
from ..exceptions import ConfigurationError, ErrorCode, ValidationError
from ..schemas.credential_schemas import ProviderCredentials, TokenResponse
from ..utils.json_utils import dumps, loads


class OAuthProvider:
    """Authorization-code flow for one provider."""

    provider: Provider
    authorize_url: str = ""
    token_url: str = ""
    scopes: List[str] = []
    # Send client credentials as HTTP Basic auth instead of form fields
    basic_client_auth = False

    def __init__(self, client: Optional[OAuthClientConfig] = None):
        self._client = client

    @property
    def client(self) -> OAuthClientConfig:
        client = self._client or get_config().providers.oauth_client(self.provider.value)
        if not client.is_configured:
            raise ConfigurationError(
                f"{self.provider.display_name} OAuth credentials not configured",
                provider=self.provider.value,
            )
        return client

    def get_authorize_url(self, settings: Dict[str, Any]) -> str:
        return self.authorize_url

    def get_token_url(self, settings: Dict[str, Any]) -> str:
        return self.token_url

    def build_authorization_url(self, state: str, settings: Dict[str, Any]) -> str:
        client = self.client
        params = {
            "client_id": client.client_id,
            "redirect_uri": client.redirect_uri,
            "response_type": "code",
            "state": state,
        }
        if self.scopes:
            params["scope"] = " ".join(self.scopes)
        return f"{self.get_authorize_url(settings)}?{urlencode(params)}"

    def connection_settings(self, settings: Dict[str, Any], **extra: Any) -> Dict[str, Any]:
        """Provider-specific values to persist alongside the tokens."""
        return {}

    def request_token(
        self,
        http: requests.Session,
        data: Dict[str, str],
        settings: Dict[str, Any],
        timeout: float,
    ) -> TokenResponse:
        """
        POST a form-encoded grant to the token endpoint.

        Raises:
            requests.RequestException: On transport errors or non-2xx responses
        """
        client = self.client
        form = dict(data)
        auth = None
        if self.basic_client_auth:
            auth = (client.client_id, client.client_secret)
        else:
            form["client_id"] = client.client_id
            form["client_secret"] = client.client_secret

        response = http.post(
            self.get_token_url(settings),
            data=form,
            auth=auth,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
        response.raise_for_status()
        return TokenResponse.model_validate(response.json())

    def authorization_code_grant(self, code: str) -> Dict[str, str]:
        return {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.client.redirect_uri,
        }

    def refresh_token_grant(self, credentials: ProviderCredentials) -> Dict[str, str]:
        return {"grant_type": "refresh_token", "refresh_token": credentials.refresh_token}


class HubSpotOAuth(OAuthProvider):
    provider = Provider.HUBSPOT
    authorize_url = "https://app.hubspot.com/oauth/authorize"
    token_url = "https://api.hubapi.com/oauth/v1/token"
    scopes = [
        "crm.objects.contacts.read",
        "crm.objects.contacts.write",
        "crm.objects.deals.read",
        "crm.objects.deals.write",
        "crm.objects.companies.read",
        "timeline",
    ]


class LeverOAuth(OAuthProvider):
    provider = Provider.LEVER
    authorize_url = "https://auth.lever.co/authorize"
    token_url = "https://auth.lever.co/oauth/token"
    scopes = [
        "opportunities:read:admin",
        "opportunities:write:admin",
        "notes:write:admin",
        "users:read:admin",
        "offline_access",
    ]


class WorkdayOAuth(OAuthProvider):
    """Workday endpoints live under each customer's own tenant URL."""

    provider = Provider.WORKDAY
    basic_client_auth = True

    def _tenant_url(self, settings: Dict[str, Any]) -> str:
        tenant_url = settings.get("tenantUrl") or get_config().providers.workday_tenant_url
        if not tenant_url:
            raise ConfigurationError(
                "Workday tenant URL not configured", provider=self.provider.value
            )
        return tenant_url.rstrip("/")

    def get_authorize_url(self, settings: Dict[str, Any]) -> str:
        return f"{self._tenant_url(settings)}/oauth2/{self.client.client_id}/authorize"

    def get_token_url(self, settings: Dict[str, Any]) -> str:
        return f"{self._tenant_url(settings)}/oauth2/{self.client.client_id}/token"

    def connection_settings(self, settings: Dict[str, Any], **extra: Any) -> Dict[str, Any]:
        merged = {**settings, **{k: v for k, v in extra.items() if v}}
        return {"tenantUrl": self._tenant_url(merged)}


class BambooHROAuth(OAuthProvider):
    """BambooHR endpoints live under each customer's company subdomain."""

    provider = Provider.BAMBOOHR

    def _company_domain(self, settings: Dict[str, Any]) -> str:
        domain = settings.get("companyDomain") or get_config().providers.bamboohr_company_domain
        if not domain:
            raise ConfigurationError(
                "BambooHR company domain not configured", provider=self.provider.value
            )
        return domain

    def get_authorize_url(self, settings: Dict[str, Any]) -> str:
        return f"https://{self._company_domain(settings)}.bamboohr.com/authorize.php"

    def get_token_url(self, settings: Dict[str, Any]) -> str:
        return f"https://{self._company_domain(settings)}.bamboohr.com/token.php?request=token"

    def connection_settings(self, settings: Dict[str, Any], **extra: Any) -> Dict[str, Any]:
        merged = {**settings, **{k: v for k, v in extra.items() if v}}
        return {"companyDomain": self._company_domain(merged)}


OAUTH_PROVIDERS = {
    Provider.HUBSPOT.value: HubSpotOAuth,
    Provider.LEVER.value: LeverOAuth,
    Provider.WORKDAY.value: WorkdayOAuth,
    Provider.BAMBOOHR.value: BambooHROAuth,
}


# ==================== OAUTH STATE ====================


def _sign(payload: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _state_secret() -> Optional[str]:
    security = get_config().security
    return security.oauth_state_secret or security.encryption_key


def encode_state(tenant_id: str, provider: str) -> str:
    """
    Build the opaque ``state`` value for an authorization redirect.

    The state is base64url JSON carrying the tenant and a nonce, followed by
    an HMAC signature when a signing secret is configured.
    """
    payload = _b64encode(
        dumps({"tenantId": tenant_id, "provider": provider, "nonce": secrets.token_hex(8)}).encode(
            "utf-8"
        )
    )
    secret = _state_secret()
    if secret:
        return f"{payload}.{_sign(payload.encode('ascii'), secret)}"
    return payload


def parse_state(state: str, provider: Optional[str] = None) -> str:
    """
    Validate an OAuth ``state`` value and return the tenant id it carries.

    Raises:
        ValidationError: If the state is malformed, unsigned when a secret is
            configured, has a bad signature, or belongs to another provider
    """
    payload, _, signature = (state or "").partition(".")
    secret = _state_secret()
    if secret and not hmac.compare_digest(signature, _sign(payload.encode("ascii"), secret)):
        raise ValidationError(
            "Invalid OAuth state signature", field="state", error_code=ErrorCode.INVALID_FORMAT
        )

    try:
        data = loads(_b64decode(payload))
    except ValueError as e:
        raise ValidationError(
            "Invalid OAuth state", field="state", error_code=ErrorCode.INVALID_FORMAT, cause=e
        ) from e

    tenant_id = data.get("tenantId") if isinstance(data, dict) else None
    if not tenant_id:
        raise ValidationError(
            "Invalid OAuth state", field="state", error_code=ErrorCode.MISSING_REQUIRED
        )
    if provider and data.get("provider") not in (None, provider):
        raise ValidationError(
            "OAuth state was issued for another provider",
            field="state",
            error_code=ErrorCode.INVALID_FORMAT,
        )
    return tenant_id
