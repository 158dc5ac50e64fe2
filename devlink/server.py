"""
devlink Companion Server

This server runs on the development machine and serves the client:
1. WebSocket endpoint the client pairs with and authenticates against
2. Repository discovery under the configured base paths
3. Slash command pools for the selected repository
4. Prompt relay to the configured assistant command

Architecture:
┌──────────────────────────────────────────────┐
│                  server.py                    │
├──────────────────────────────────────────────┤
│  /ws        ←── client connects here          │
│  /health    ←── liveness                      │
│  /status    ←── connected client, repository  │
│                                               │
│  ┌──────────────────┐   ┌─────────────────┐  │
│  │ConnectionHandler │←─►│   AuthManager   │  │
│  │ (single client,  │   │ (pairing id,    │  │
│  │  repos, prompts) │   │  tokens)        │  │
│  └──────────────────┘   └─────────────────┘  │
└──────────────────────────────────────────────┘
"""

import argparse
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI

from devlink import __version__
from devlink.companion import AuthManager, ConnectionHandler
from devlink.config import Config, ServerConfig, print_startup_banner, setup_logging
from devlink.routes import companion_router, init_companion_routes


logger = logging.getLogger("devlink.server")


# =============================================================================
# FastAPI Application
# =============================================================================

def create_app(
    server_config: Optional[ServerConfig] = None,
    handler: Optional[ConnectionHandler] = None,
    show_banner: bool = True
) -> FastAPI:
    """
    Build the companion app.

    Args:
        server_config: Server configuration (defaults to the environment)
        handler: Connection handler to serve (tests inject one with a known pairing id)
        show_banner: Print the pairing banner at start-up
    """
    server_config = server_config or ServerConfig.from_env()
    handler = handler or ConnectionHandler(server_config, AuthManager())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown."""
        repos = handler.refresh_repositories()
        logger.info(f"Found {len(repos)} repositories under {len(server_config.repo_paths)} base paths")

        if show_banner:
            print_startup_banner(server_config.websocket_url, handler.pairing_payload())
        logger.info(f"Pairing id: {handler.auth.pairing_id}")
        logger.info("Server ready. Waiting for client connection...")

        yield

        # Shutdown
        logger.info("Shutting down...")
        await handler.close_all()
        handler.auth.revoke_all()
        logger.info("Goodbye! 👋")

    app = FastAPI(
        title="devlink Companion Server",
        description="Development-machine endpoint for the devlink client",
        version=__version__,
        lifespan=lifespan
    )
    app.state.handler = handler

    init_companion_routes(handler)
    app.include_router(companion_router)

    # =========================================================================
    # Health Endpoints
    # =========================================================================

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "client_connected": handler.is_connected
        }

    @app.get("/status")
    async def status():
        """Detailed status endpoint."""
        return {
            "status": "running",
            "version": __version__,
            "websocket_url": server_config.websocket_url,
            "client": handler.status(),
            "active_tokens": handler.auth.token_count,
        }

    return app


# =============================================================================
# Main Entry Point
# =============================================================================

def main(argv: Optional[list[str]] = None) -> None:
    import uvicorn

    config = Config.from_env()
    server_config = config.server

    parser = argparse.ArgumentParser(prog="devlink-server", description="devlink companion server")
    parser.add_argument("--host", default=server_config.host)
    parser.add_argument("--port", type=int, default=server_config.port)
    parser.add_argument("--repo-path", action="append", default=None,
                        help="Base directory to scan for git repositories (repeatable)")
    parser.add_argument("--legacy-auth", action="store_true", default=server_config.legacy_auth_replies,
                        help="Reply to auth with bare AUTH_* literals instead of JSON")
    args = parser.parse_args(argv)

    server_config.host = args.host
    server_config.port = args.port
    server_config.legacy_auth_replies = args.legacy_auth
    if args.repo_path:
        server_config.repo_paths = [Path(p) for p in args.repo_path]

    setup_logging(config.log_level)

    uvicorn.run(
        create_app(server_config),
        host=server_config.host,
        port=server_config.port,
        log_level="warning",  # Reduce Uvicorn noise, our logger handles it
        access_log=False,
    )


if __name__ == "__main__":
    main()
