from .whatsapp import WhatsAppSendResult, WhatsAppService

__all__ = ["WhatsAppSendResult", "WhatsAppService"]
