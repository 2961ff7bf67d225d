"""
Azure Storage Queue utilities.

Sync jobs are published as JSON messages. Publishing goes through the
Azure SDK directly; a missing queue is created on first use.
"""

import json
from typing import Any, Dict, Optional

from azure.core.exceptions import ResourceNotFoundError
from azure.storage.queue import QueueClient
from pydantic_core import to_jsonable_python

from ..exceptions import ErrorCode, ServiceError
from .logger import get_logger


def serialize_message(message_data: Any) -> str:
    """Serialize a message body (dicts, pydantic models, datetimes) to JSON text."""
    return json.dumps(to_jsonable_python(message_data))


def send_message_to_queue_direct(
    connection_string: str,
    queue_name: str,
    message_data: Dict[str, Any],
    queue_client: Optional[QueueClient] = None,
) -> None:
    """
    Send a message directly to Azure Storage Queue using SDK.

    Args:
        connection_string: Azure Storage connection string
        queue_name: Name of the target queue
        message_data: Message data to send (will be JSON serialized)
        queue_client: Pre-built client to use instead of one from the connection string

    Raises:
        ServiceError: If the message cannot be serialized or delivered
    """
    logger = get_logger()

    try:
        json_data = serialize_message(message_data)
    except (TypeError, ValueError) as e:
        raise ServiceError(
            f"Failed to serialize message for queue {queue_name}: {e}",
            error_code=ErrorCode.QUEUE_ERROR,
            operation="send_message_to_queue_direct",
            cause=e,
            queue_name=queue_name,
        ) from e

    if queue_client is None:
        queue_client = QueueClient.from_connection_string(
            conn_str=connection_string, queue_name=queue_name
        )

    try:
        logger.debug(f"Sending message to queue: {queue_name}")
        queue_client.send_message(json_data)
    except ResourceNotFoundError:
        logger.debug(f"Queue {queue_name} not found, creating it")
        try:
            queue_client.create_queue()
            queue_client.send_message(json_data)
        except Exception as create_error:
            raise ServiceError(
                f"Failed to create queue or send message to {queue_name}: {create_error}",
                error_code=ErrorCode.QUEUE_ERROR,
                operation="send_message_to_queue_direct",
                cause=create_error,
                queue_name=queue_name,
            ) from create_error
    except Exception as e:
        raise ServiceError(
            f"Failed to send message to queue {queue_name}: {e}",
            error_code=ErrorCode.QUEUE_ERROR,
            operation="send_message_to_queue_direct",
            cause=e,
            queue_name=queue_name,
        ) from e

    logger.debug(f"Successfully sent message to queue: {queue_name}")
