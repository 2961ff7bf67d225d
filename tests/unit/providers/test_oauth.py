"""Tests for the OAuth provider strategies and the signed state value."""

from urllib.parse import parse_qs, urlparse

import pytest

from ats_sync_core.config import OAuthClientConfig, SecurityConfig
from ats_sync_core.exceptions import ConfigurationError, ErrorCode, ValidationError
from ats_sync_core.providers.oauth import (
    OAUTH_PROVIDERS,
    BambooHROAuth,
    HubSpotOAuth,
    LeverOAuth,
    WorkdayOAuth,
    encode_state,
    parse_state,
)
from ats_sync_core.schemas.credential_schemas import ProviderCredentials


def _query(url):
    return {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}


class TestAuthorizationUrl:
    def test_hubspot(self):
        url = HubSpotOAuth().build_authorization_url("state-1", {})

        assert url.startswith("https://app.hubspot.com/oauth/authorize?")
        query = _query(url)
        assert query["client_id"] == "hubspot-client-id"
        assert query["redirect_uri"] == "https://app.example.com/integrations/hubspot/callback"
        assert query["response_type"] == "code"
        assert query["state"] == "state-1"
        assert "crm.objects.contacts.write" in query["scope"].split(" ")

    def test_lever_requests_offline_access(self):
        query = _query(LeverOAuth().build_authorization_url("s", {}))
        assert "offline_access" in query["scope"].split(" ")

    def test_workday_uses_tenant_url(self):
        url = WorkdayOAuth().build_authorization_url("s", {"tenantUrl": "https://wd5.myworkday.com/acme/"})
        assert url.startswith("https://wd5.myworkday.com/acme/oauth2/workday-client-id/authorize?")
        assert "scope" not in _query(url)

    def test_workday_falls_back_to_configured_tenant_url(self, test_config):
        test_config.providers.workday_tenant_url = "https://wd5.myworkday.com/globex"
        url = WorkdayOAuth().get_token_url({})
        assert url == "https://wd5.myworkday.com/globex/oauth2/workday-client-id/token"

    def test_workday_without_tenant_url(self):
        with pytest.raises(ConfigurationError, match="Workday tenant URL not configured"):
            WorkdayOAuth().build_authorization_url("s", {})

    def test_bamboohr_uses_company_domain(self):
        oauth = BambooHROAuth()
        settings = {"companyDomain": "acme"}
        assert oauth.build_authorization_url("s", settings).startswith("https://acme.bamboohr.com/authorize.php?")
        assert oauth.get_token_url(settings) == "https://acme.bamboohr.com/token.php?request=token"

    def test_bamboohr_without_domain(self):
        with pytest.raises(ConfigurationError, match="BambooHR company domain not configured"):
            BambooHROAuth().get_token_url({})

    def test_unconfigured_client(self, test_config):
        test_config.providers.hubspot = OAuthClientConfig(client_id="only-an-id")
        with pytest.raises(ConfigurationError, match="HubSpot OAuth credentials not configured"):
            HubSpotOAuth().build_authorization_url("s", {})

    def test_explicit_client_overrides_config(self):
        client = OAuthClientConfig(client_id="other", client_secret="x", redirect_uri="https://cb.example.com")
        assert _query(LeverOAuth(client).build_authorization_url("s", {}))["client_id"] == "other"


class TestGrants:
    def test_authorization_code_grant(self):
        assert LeverOAuth().authorization_code_grant("abc") == {
            "grant_type": "authorization_code",
            "code": "abc",
            "redirect_uri": "https://app.example.com/integrations/lever/callback",
        }

    def test_refresh_token_grant(self):
        credentials = ProviderCredentials(access_token="a", refresh_token="r")
        assert HubSpotOAuth().refresh_token_grant(credentials) == {
            "grant_type": "refresh_token",
            "refresh_token": "r",
        }

    def test_connection_settings(self):
        assert WorkdayOAuth().connection_settings({}, tenantUrl="https://wd5.myworkday.com/acme/") == {
            "tenantUrl": "https://wd5.myworkday.com/acme"
        }
        assert BambooHROAuth().connection_settings({"companyDomain": "acme"}, companyDomain=None) == {
            "companyDomain": "acme"
        }
        assert HubSpotOAuth().connection_settings({"anything": 1}) == {}

    def test_registry_of_strategies(self):
        assert set(OAUTH_PROVIDERS) == {"hubspot", "lever", "workday", "bamboohr"}


class TestState:
    def test_round_trip(self, tenant_id):
        state = encode_state(tenant_id, "hubspot")
        assert "." in state
        assert parse_state(state, "hubspot") == tenant_id

    def test_nonce_makes_states_unique(self, tenant_id):
        assert encode_state(tenant_id, "hubspot") != encode_state(tenant_id, "hubspot")

    def test_provider_check_is_optional(self, tenant_id):
        assert parse_state(encode_state(tenant_id, "lever")) == tenant_id

    def test_tampered_payload(self, tenant_id):
        _, signature = encode_state(tenant_id, "hubspot").split(".")
        forged = encode_state("tenant-2", "hubspot").split(".")[0]

        with pytest.raises(ValidationError, match="Invalid OAuth state signature"):
            parse_state(f"{forged}.{signature}", "hubspot")

    def test_unsigned_state_rejected_when_secret_configured(self, tenant_id):
        payload = encode_state(tenant_id, "hubspot").split(".")[0]
        with pytest.raises(ValidationError, match="signature"):
            parse_state(payload, "hubspot")

    def test_wrong_provider(self, tenant_id):
        with pytest.raises(ValidationError, match="another provider") as exc_info:
            parse_state(encode_state(tenant_id, "lever"), "hubspot")
        assert exc_info.value.error_code == ErrorCode.INVALID_FORMAT

    def test_unsigned_states_without_secret(self, test_config, tenant_id):
        test_config.security = SecurityConfig(encryption_key=None, oauth_state_secret=None)

        state = encode_state(tenant_id, "hubspot")

        assert "." not in state
        assert parse_state(state, "hubspot") == tenant_id

    def test_malformed_without_secret(self, test_config):
        test_config.security = SecurityConfig(encryption_key=None, oauth_state_secret=None)
        with pytest.raises(ValidationError, match="Invalid OAuth state"):
            parse_state("%%%")

    def test_falls_back_to_encryption_key(self, test_config, tenant_id):
        state = encode_state(tenant_id, "hubspot")
        test_config.security = SecurityConfig(
            encryption_key=test_config.security.encryption_key, oauth_state_secret=None
        )
        with pytest.raises(ValidationError, match="signature"):
            parse_state(state, "hubspot")
        assert parse_state(encode_state(tenant_id, "hubspot"), "hubspot") == tenant_id
