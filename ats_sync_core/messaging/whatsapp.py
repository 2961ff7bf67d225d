"""
WhatsApp Business Cloud API sender.

Credentials are looked up per tenant (a ``whatsapp`` integration holding an
encrypted phone number id and access token) and fall back to the global
``WHATSAPP_*`` environment credentials. With neither configured the service
runs in mock mode and fabricates message ids.

Sending never raises; every outcome is a ``WhatsAppSendResult``.
"""

import re
import secrets
import time
from typing import Any, Dict, List, NamedTuple, Optional

import requests
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..config import WhatsAppConfig, get_config
from ..constants import Provider
from ..exceptions import BaseError, CredentialNotFoundError
from ..schemas.credential_schemas import ProviderCredentials
from ..schemas.integration_schemas import ConnectionTestResult
from ..services.credential_service import CredentialService
from ..utils.logger import get_logger

GRAPH_URL = "https://graph.facebook.com"
MESSAGING_PRODUCT = "whatsapp"

_E164 = re.compile(r"^\+?[1-9]\d{1,14}$")
_PHONE_SEPARATORS = re.compile(r"[\s\-()]")
_NON_DIALABLE = re.compile(r"[^\d+]")


class WhatsAppSendResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class WhatsAppCredentials(NamedTuple):
    phone_number_id: str
    access_token: str
    business_id: Optional[str] = None


def normalize_phone_number(phone: str) -> str:
    """Digits only; the Graph API expects numbers without a leading ``+``."""
    return _NON_DIALABLE.sub("", phone or "").lstrip("+")


def is_valid_phone_number(phone: str) -> bool:
    return bool(_E164.match(_PHONE_SEPARATORS.sub("", phone or "")))


def _graph_error(response: requests.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return default


class WhatsAppService:
    """Sends WhatsApp text and template messages."""

    def __init__(
        self,
        session: Optional[Session] = None,
        config: Optional[WhatsAppConfig] = None,
        http: Optional[requests.Session] = None,
        credentials: Optional[CredentialService] = None,
    ):
        self.config = config or get_config().whatsapp
        self.http = http or requests.Session()
        self.credentials = credentials
        if self.credentials is None and session is not None:
            self.credentials = CredentialService(session, Provider.WHATSAPP.value)
        self.logger = get_logger()

        if self.global_credentials() is None:
            self.logger.warning("WhatsApp credentials not configured. Using mock mode.")

    @property
    def timeout(self) -> float:
        return get_config().sync.request_timeout

    def url(self, path: str) -> str:
        return f"{GRAPH_URL}/{self.config.api_version}/{path.lstrip('/')}"

    # ==================== CREDENTIALS ====================

    def global_credentials(self) -> Optional[WhatsAppCredentials]:
        if self.config.phone_number_id and self.config.access_token:
            return WhatsAppCredentials(self.config.phone_number_id, self.config.access_token)
        return None

    def tenant_credentials(self, tenant_id: str) -> Optional[WhatsAppCredentials]:
        if self.credentials is None or not self.credentials.is_connected(tenant_id):
            return None
        try:
            stored = self.credentials.get_credentials(tenant_id)
        except CredentialNotFoundError:
            return None
        except BaseError as e:
            self.logger.warning(
                f"Failed to decrypt WhatsApp credentials for tenant {tenant_id}: {e.message}",
                extra={"tenant_id": tenant_id},
            )
            return None
        if not (stored.phone_number_id and stored.access_token):
            return None
        return WhatsAppCredentials(
            stored.phone_number_id, stored.access_token, getattr(stored, "business_id", None)
        )

    def get_credentials(self, tenant_id: Optional[str] = None) -> Optional[WhatsAppCredentials]:
        """Tenant credentials first, then the global ones."""
        if tenant_id:
            credentials = self.tenant_credentials(tenant_id)
            if credentials is not None:
                return credentials
        return self.global_credentials()

    def save_tenant_credentials(
        self,
        tenant_id: str,
        phone_number_id: str,
        access_token: str,
        business_id: Optional[str] = None,
    ) -> None:
        """Store encrypted per-tenant credentials as the tenant's ``whatsapp`` integration."""
        if self.credentials is None:
            raise CredentialNotFoundError(
                "WhatsApp tenant credentials need a database session", tenant_id=tenant_id
            )
        fields: Dict[str, Any] = {"phone_number_id": phone_number_id, "access_token": access_token}
        if business_id:
            fields["business_id"] = business_id
        self.credentials.save_credentials(tenant_id, ProviderCredentials(**fields))

    def is_enabled(self, tenant_id: Optional[str] = None) -> bool:
        return self.get_credentials(tenant_id) is not None

    # ==================== SENDING ====================

    def send_message(self, to: str, body: str, tenant_id: Optional[str] = None) -> WhatsAppSendResult:
        recipient = normalize_phone_number(to)
        payload = {"type": "text", "text": {"body": body}}
        return self._send(recipient, payload, body, tenant_id, "message")

    def send_template(
        self,
        to: str,
        template_name: str,
        language_code: str,
        components: Optional[List[Any]] = None,
        tenant_id: Optional[str] = None,
    ) -> WhatsAppSendResult:
        recipient = normalize_phone_number(to)
        payload = {
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": language_code},
                "components": components or [],
            },
        }
        return self._send(recipient, payload, f"[Template: {template_name}]", tenant_id, "template")

    def _send(
        self,
        recipient: str,
        payload: Dict[str, Any],
        preview: str,
        tenant_id: Optional[str],
        kind: str,
    ) -> WhatsAppSendResult:
        credentials = self.get_credentials(tenant_id)
        if credentials is None:
            return self._mock_send(recipient, preview)

        context = {"tenant_id": tenant_id, "to": recipient}
        try:
            response = self.http.post(
                self.url(f"{credentials.phone_number_id}/messages"),
                json={
                    "messaging_product": MESSAGING_PRODUCT,
                    "recipient_type": "individual",
                    "to": recipient,
                    **payload,
                },
                headers={"Authorization": f"Bearer {credentials.access_token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            self.logger.error(f"Failed to send WhatsApp {kind}: {e}", extra=context)
            return WhatsAppSendResult(success=False, error=str(e))

        if not response.ok:
            error = _graph_error(response, "Unknown WhatsApp API error")
            self.logger.error(f"WhatsApp API error: {error}", extra=context)
            return WhatsAppSendResult(success=False, error=error)

        try:
            messages = response.json().get("messages") or []
        except (ValueError, AttributeError):
            messages = []
        message_id = messages[0].get("id") if messages else None
        self.logger.info(f"WhatsApp {kind} sent: {message_id}", extra=context)
        return WhatsAppSendResult(success=True, message_id=message_id)

    def _mock_send(self, recipient: str, preview: str) -> WhatsAppSendResult:
        message_id = f"wamid.mock{int(time.time() * 1000)}{secrets.token_hex(3)}"
        self.logger.debug(f"[MOCK WhatsApp] To: {recipient}, Body: {preview[:50]}")
        return WhatsAppSendResult(success=True, message_id=message_id)

    def test_connection(self, tenant_id: Optional[str] = None) -> ConnectionTestResult:
        credentials = self.get_credentials(tenant_id)
        if credentials is None:
            return ConnectionTestResult(success=False, message="WhatsApp not configured")

        try:
            response = self.http.get(
                self.url(credentials.phone_number_id),
                headers={"Authorization": f"Bearer {credentials.access_token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            return ConnectionTestResult(success=False, message=str(e))

        if not response.ok:
            return ConnectionTestResult(
                success=False, message=_graph_error(response, "Connection failed")
            )
        try:
            display = response.json().get("display_phone_number")
        except (ValueError, AttributeError):
            display = None
        return ConnectionTestResult(
            success=True, message=f"Connected: {display or credentials.phone_number_id}"
        )

    is_valid_phone_number = staticmethod(is_valid_phone_number)
