"""
Companion WebSocket endpoint - the client connects here.

This endpoint handles:
- Refusing the connection while the handler is not initialized
- Delegation to ConnectionHandler for auth and message handling
- A small status route for debugging
"""

from typing import Optional

from fastapi import APIRouter, WebSocket
from fastapi.responses import JSONResponse

from devlink.companion import ConnectionHandler
from devlink.session.types import CloseCode


router = APIRouter(tags=["Companion WebSocket"])

# These will be set by the main server module
_handler: Optional[ConnectionHandler] = None


def init_companion_routes(handler: ConnectionHandler) -> None:
    """Initialize route dependencies."""
    global _handler
    _handler = handler


@router.websocket("/ws")
async def companion_websocket_endpoint(websocket: WebSocket) -> None:
    """
    WebSocket endpoint for the client.

    Protocol:
        1. Client connects (refused if another client is authenticated)
        2. Client sends its pairing id, or {"token": "..."} to reconnect
        3. Server replies with the auth status (AUTH_SUCCESS carries a fresh
           reconnection token and the client id)
        4. Client sends list_repos / select_repo / prompt commands
    """
    if _handler is None:
        await websocket.close(code=CloseCode.INTERNAL_ERROR, reason="Server not initialized")
        return

    await _handler.handle_connection(websocket)


@router.get("/ws/status")
async def companion_status() -> JSONResponse:
    """Client connection status."""
    if _handler is None:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "message": "Server not initialized"}
        )

    return JSONResponse(content={
        "status": "connected" if _handler.is_connected else "waiting",
        **_handler.status(),
    })
