"""
Pydantic schemas for provider credentials.

The whole credential set for a (tenant, provider) pair is serialized to JSON
and encrypted before it is stored in ``Integration.tokens``.
"""

from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..db.db_base import as_utc, utc_now


class ProviderCredentials(BaseModel):
    """Decrypted credential set for one provider connection."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="allow")

    access_token: Optional[str] = Field(None, description="OAuth access token")
    refresh_token: Optional[str] = Field(None, description="OAuth refresh token")
    expires_at: Optional[datetime] = Field(None, description="Access token expiry (UTC)")
    api_key: Optional[str] = Field(None, description="API key for key-based providers")
    on_behalf_of_user_id: Optional[str] = Field(None, description="Greenhouse On-Behalf-Of user")
    tenant_url: Optional[str] = Field(None, description="Workday tenant base URL")
    company_domain: Optional[str] = Field(None, description="BambooHR company subdomain")
    phone_number_id: Optional[str] = Field(None, description="WhatsApp phone number id")

    @property
    def uses_api_key(self) -> bool:
        return bool(self.api_key)

    def expires_within(self, seconds: int) -> bool:
        """True when the access token expires within ``seconds`` (or has no usable token)."""
        if self.uses_api_key:
            return False
        if not self.access_token:
            return True
        if self.expires_at is None:
            return False
        return as_utc(self.expires_at) <= utc_now() + timedelta(seconds=seconds)

    def is_expired(self) -> bool:
        return self.expires_within(0)


class TokenResponse(BaseModel):
    """Token endpoint response shared by the OAuth providers."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = Field(None, ge=0)
    token_type: Optional[str] = None

    def to_credentials(self, previous: Optional[ProviderCredentials] = None) -> ProviderCredentials:
        """
        Build a credential set from the response.

        Provider-specific fields and the refresh token are carried over from
        ``previous`` when the response does not include them.
        """
        base = previous.model_dump() if previous else {}
        base.update(
            access_token=self.access_token,
            refresh_token=self.refresh_token or base.get("refresh_token"),
            expires_at=(
                utc_now() + timedelta(seconds=self.expires_in)
                if self.expires_in is not None
                else None
            ),
        )
        return ProviderCredentials(**base)


class TokenInfo(BaseModel):
    valid: bool
    expires_at: Optional[datetime] = None
