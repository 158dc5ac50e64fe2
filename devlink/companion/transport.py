"""
Send helpers for the companion endpoint.

Every server event goes out as one JSON text frame; failures are logged and
reported as False rather than raised.
"""

import logging

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from devlink.protocol import ErrorMessage, encode
from devlink.utils import truncate_output


logger = logging.getLogger("devlink.companion")


async def send_message(ws: WebSocket, message: BaseModel) -> bool:
    """
    Send a protocol model to the client.

    Returns:
        True if sent successfully, False otherwise
    """
    text = encode(message)
    try:
        await ws.send_text(text)
    except WebSocketDisconnect:
        logger.debug("Cannot send - WebSocket disconnected")
        return False
    except Exception as e:
        logger.error(f"Failed to send message: {e}")
        return False

    logger.debug(f"Sent: {truncate_output(text, 200)}")
    return True


async def send_text(ws: WebSocket, text: str) -> bool:
    """Send a raw text frame (auth replies)."""
    try:
        await ws.send_text(text)
        return True
    except WebSocketDisconnect:
        logger.debug("Cannot send - WebSocket disconnected")
        return False
    except Exception as e:
        logger.error(f"Failed to send text: {e}")
        return False


async def send_error(ws: WebSocket, error_message: str) -> bool:
    """Send an ``error`` event."""
    return await send_message(ws, ErrorMessage(message=error_message))
