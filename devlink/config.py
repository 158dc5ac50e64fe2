"""
Configuration and logging setup for devlink.

Provides centralized configuration with environment variable support
and sensible defaults for both the client session and the companion server.
"""

import os
import sys
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


# =============================================================================
# Logging Configuration
# =============================================================================

# ANSI color codes for terminal output
class LogColors:
    """ANSI escape codes for colored terminal output."""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"

    BRIGHT_BLACK = "\033[90m"
    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_BLUE = "\033[94m"
    BRIGHT_MAGENTA = "\033[95m"
    BRIGHT_CYAN = "\033[96m"
    BRIGHT_WHITE = "\033[97m"


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors and component-based formatting."""

    # Component colors and icons
    COMPONENT_STYLES = {
        "devlink": (LogColors.BRIGHT_CYAN, "🔗"),
        "devlink.session": (LogColors.GREEN, "🔄"),
        "devlink.auth": (LogColors.MAGENTA, "🔐"),
        "devlink.transport": (LogColors.BRIGHT_BLACK, "📦"),
        "devlink.keepalive": (LogColors.YELLOW, "💓"),
        "devlink.router": (LogColors.CYAN, "📡"),
        "devlink.database": (LogColors.BLUE, "💾"),
        "devlink.companion": (LogColors.BRIGHT_MAGENTA, "🖥"),
        "devlink.server": (LogColors.BRIGHT_BLUE, "🚀"),
    }

    # Level colors and labels
    LEVEL_STYLES = {
        logging.DEBUG: (LogColors.BRIGHT_BLACK, "DBG"),
        logging.INFO: (LogColors.GREEN, "INF"),
        logging.WARNING: (LogColors.YELLOW, "WRN"),
        logging.ERROR: (LogColors.RED, "ERR"),
        logging.CRITICAL: (LogColors.BRIGHT_RED + LogColors.BOLD, "CRT"),
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        component_color, icon = self.COMPONENT_STYLES.get(
            record.name,
            (LogColors.WHITE, "•")
        )

        # Check for parent logger match
        if record.name not in self.COMPONENT_STYLES:
            for comp_name, style in self.COMPONENT_STYLES.items():
                if record.name.startswith(comp_name + "."):
                    component_color, icon = style
                    break

        level_color, level_label = self.LEVEL_STYLES.get(
            record.levelno,
            (LogColors.WHITE, "???")
        )

        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        short_name = record.name.replace("devlink.", "").upper()
        if short_name == "DEVLINK":
            short_name = "CLIENT"

        if self.use_colors:
            line = (
                f"{LogColors.DIM}{timestamp}{LogColors.RESET} "
                f"{level_color}{level_label}{LogColors.RESET} "
                f"{icon} {component_color}{short_name:10}{LogColors.RESET} "
                f"{LogColors.BRIGHT_WHITE}{record.getMessage()}{LogColors.RESET}"
            )
        else:
            # Plain output (for file logging or non-TTY)
            line = f"{timestamp} {level_label} {short_name:10} {record.getMessage()}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


def setup_logging(
    level: int | str = logging.INFO,
    use_colors: bool = True
) -> logging.Logger:
    """
    Configure and return the main logger.

    Args:
        level: Logging level (number or name such as "DEBUG")
        use_colors: Whether to use colored output

    Returns:
        Configured "devlink" logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))
    console_handler.setLevel(level)

    root.setLevel(level)
    root.addHandler(console_handler)

    devlink_logger = logging.getLogger("devlink")
    devlink_logger.setLevel(level)
    devlink_logger.propagate = True

    for child in ["session", "auth", "transport", "keepalive", "router",
                  "database", "companion", "server"]:
        logging.getLogger(f"devlink.{child}").setLevel(level)

    # Silence noisy third-party loggers
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    uvicorn_error = logging.getLogger("uvicorn.error")
    uvicorn_error.handlers = []
    uvicorn_error.addHandler(console_handler)
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return devlink_logger


logger = logging.getLogger("devlink")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def default_database_path() -> str:
    """
    Get the path to the SQLite credential database.

    Uses DEVLINK_DATABASE_PATH if set, otherwise ~/.devlink/devlink.db.
    """
    if db_path := os.getenv("DEVLINK_DATABASE_PATH"):
        return db_path
    return str(Path.home() / ".devlink" / "devlink.db")


# =============================================================================
# Client Configuration
# =============================================================================

@dataclass
class ClientConfig:
    """Client session configuration."""
    database_path: str = field(default_factory=default_database_path)

    # Timing (in seconds)
    keepalive_interval: float = 30.0  # Background liveness probe period
    probe_timeout: float = 10.0  # Wait this long for a pong
    connectivity_wait: float = 10.0  # Keep retrying the opening handshake this long
    open_timeout: float = 10.0
    close_timeout: float = 5.0

    # Behaviour
    auto_list_repositories: bool = True
    event_log_limit: int = 500

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Create config from environment variables."""
        return cls(
            database_path=default_database_path(),
            keepalive_interval=float(os.getenv("DEVLINK_KEEPALIVE_INTERVAL", "30")),
            probe_timeout=float(os.getenv("DEVLINK_PROBE_TIMEOUT", "10")),
            connectivity_wait=float(os.getenv("DEVLINK_CONNECTIVITY_WAIT", "10")),
            auto_list_repositories=_env_bool("DEVLINK_AUTO_LIST_REPOS", True),
            event_log_limit=int(os.getenv("DEVLINK_EVENT_LOG_LIMIT", "500")),
        )


# =============================================================================
# Server Configuration
# =============================================================================

@dataclass
class ServerConfig:
    """Companion server configuration."""
    host: str = "127.0.0.1"
    port: int = 9001
    auth_timeout: float = 5.0
    remote_url: Optional[str] = None
    repo_paths: list = field(default_factory=list)
    assistant_command: Optional[str] = None
    legacy_auth_replies: bool = False

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create config from environment variables."""
        repo_paths = [
            Path(p.strip())
            for p in os.getenv("REPO_PATHS", "").split(",")
            if p.strip()
        ]
        return cls(
            host=os.getenv("SERVER_HOST", "127.0.0.1"),
            port=int(os.getenv("SERVER_PORT", "9001")),
            auth_timeout=float(os.getenv("AUTH_TIMEOUT", "5")),
            remote_url=os.getenv("REMOTE_URL") or None,
            repo_paths=repo_paths,
            assistant_command=os.getenv("ASSISTANT_COMMAND") or None,
            legacy_auth_replies=_env_bool("DEVLINK_LEGACY_AUTH", False),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    @property
    def bind_address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def websocket_url(self) -> str:
        """URL advertised to clients in the pairing payload."""
        return self.remote_url or f"ws://{self.bind_address}/ws"


# =============================================================================
# Composite Configuration
# =============================================================================

@dataclass
class Config:
    """Complete application configuration."""
    client: ClientConfig = field(default_factory=ClientConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """Create complete config from environment."""
        return cls(
            client=ClientConfig.from_env(),
            server=ServerConfig.from_env(),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


def print_startup_banner(server_url: str, pairing_payload: str) -> None:
    """Print the companion server banner with pairing details."""
    C = LogColors
    banner = f"""
{C.BRIGHT_CYAN}╔══════════════════════════════════════════════╗
║              devlink companion server        ║
╚══════════════════════════════════════════════╝{C.RESET}
  {C.GREEN}▸ WebSocket:{C.WHITE} {server_url}
  {C.YELLOW}▸ Pairing:{C.WHITE}   {pairing_payload}
{C.DIM}  Only one client may connect at a time. The pairing id must be
  sent within the auth timeout after connecting.{C.RESET}
"""
    print(banner)
