"""Utility modules for the sync engine."""

from .crypto_utils import decrypt, decrypt_object, encrypt, encrypt_object
from .json_utils import dumps, loads
from .logger import ContextAwareLogger, configure_logging, get_logger
from .queue_utils import send_message_to_queue_direct
from .retry_utils import calculate_exponential_backoff

__all__ = [
    # Encryption
    "decrypt",
    "decrypt_object",
    "encrypt",
    "encrypt_object",
    # JSON
    "dumps",
    "loads",
    # Logging
    "ContextAwareLogger",
    "configure_logging",
    "get_logger",
    # Queues
    "send_message_to_queue_direct",
    # Retry
    "calculate_exponential_backoff",
]
