"""
Wire protocol shared by the client session and the companion server.

All frames are UTF-8 text. Commands and events are small JSON objects
tagged by a ``type`` field; auth responses are tagged by ``status`` (or sent
as bare legacy literals). Decoding goes through pydantic discriminated
unions so unknown shapes end up as an explicit ``UnrecognizedMessage``
instead of falling through nested optional lookups.
"""

import json
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


# =============================================================================
# Shared records
# =============================================================================

class Repository(BaseModel):
    """A git repository on the development machine. Identity is ``path``."""
    model_config = ConfigDict(frozen=True)

    name: str
    path: str

    @property
    def key(self) -> str:
        return self.path


class SlashCommand(BaseModel):
    """A slash command the assistant understands. Identity is ``name``."""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    usage: Optional[str] = None
    example: Optional[str] = None
    content: Optional[str] = None  # Full prompt text for file-based commands


# =============================================================================
# Authentication
# =============================================================================

class AuthStatus(str, Enum):
    SUCCESS = "AUTH_SUCCESS"
    FAILED = "AUTH_FAILED"
    TIMEOUT = "AUTH_TIMEOUT"


AUTH_LITERALS = frozenset(status.value for status in AuthStatus)


class TokenAuth(BaseModel):
    """Reconnection-token credential sent as the first client frame."""
    token: str


class AuthResult(BaseModel):
    """Server reply to the first client frame."""
    status: AuthStatus
    reconnection_token: Optional[str] = None
    client_id: Optional[str] = None


class PairingPayload(BaseModel):
    """Contents of the pairing QR code: ``{"uuid": ..., "url": ...}``."""
    uuid: str
    url: Optional[str] = None


def parse_pairing_payload(raw: str) -> PairingPayload:
    """
    Parse a scanned pairing payload.

    A JSON object yields the pairing id and server url, a JSON string is the
    pairing id itself, and anything else is taken as a bare pairing id.
    Fields that are not strings are treated as missing.
    """
    text = raw.strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return PairingPayload(uuid=text)

    if isinstance(data, dict):
        pairing_id = data.get("uuid")
        url = data.get("url")
        return PairingPayload(
            uuid=pairing_id.strip() if isinstance(pairing_id, str) else "",
            url=(url.strip() or None) if isinstance(url, str) else None,
        )
    if isinstance(data, str):
        return PairingPayload(uuid=data.strip())
    return PairingPayload(uuid=text)


# =============================================================================
# Client -> Server commands
# =============================================================================

class ListReposCommand(BaseModel):
    type: Literal["list_repos"] = "list_repos"


class SelectRepoCommand(BaseModel):
    type: Literal["select_repo"] = "select_repo"
    path: str


class PromptCommand(BaseModel):
    type: Literal["prompt"] = "prompt"
    text: str


ClientMessage = Annotated[
    Union[ListReposCommand, SelectRepoCommand, PromptCommand],
    Field(discriminator="type"),
]
client_message_adapter: TypeAdapter = TypeAdapter(ClientMessage)


# =============================================================================
# Server -> Client events
# =============================================================================

class RepoListMessage(BaseModel):
    type: Literal["repo_list"] = "repo_list"
    repositories: list[Repository] = Field(default_factory=list)


class RepoSelectedMessage(BaseModel):
    type: Literal["repo_selected"] = "repo_selected"
    repository: Repository


class CommandsListMessage(BaseModel):
    type: Literal["commands_list"] = "commands_list"
    predefined_commands: list[SlashCommand] = Field(default_factory=list)
    custom_commands: list[SlashCommand] = Field(default_factory=list)


class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def detail(self) -> str:
        return self.message or self.error or "Unknown error"


class ResponseMessage(BaseModel):
    type: Literal["response"] = "response"
    text: str = ""


class UnrecognizedMessage(BaseModel):
    """Any decoded JSON object that is not one of the known server events."""
    type: Optional[str] = None
    payload: dict = Field(default_factory=dict)
    reason: Optional[str] = None


ServerMessage = Annotated[
    Union[
        RepoListMessage,
        RepoSelectedMessage,
        CommandsListMessage,
        ErrorMessage,
        ResponseMessage,
    ],
    Field(discriminator="type"),
]
server_message_adapter: TypeAdapter = TypeAdapter(ServerMessage)

SERVER_MESSAGE_TYPES = frozenset({
    "repo_list",
    "repo_selected",
    "commands_list",
    "error",
    "response",
})


def decode_server_message(data: dict) -> Any:
    """
    Decode a JSON object into a server event.

    Returns one of the known message models, or ``UnrecognizedMessage`` when
    the ``type`` is unknown or the payload does not match its shape.
    """
    msg_type = data.get("type")
    if msg_type not in SERVER_MESSAGE_TYPES:
        return UnrecognizedMessage(
            type=msg_type if isinstance(msg_type, str) else None,
            payload=data,
            reason="unknown type",
        )

    try:
        return server_message_adapter.validate_python(data)
    except ValidationError as e:
        return UnrecognizedMessage(
            type=msg_type,
            payload=data,
            reason=f"invalid {msg_type} payload: {e.error_count()} error(s)",
        )


def encode(message: BaseModel) -> str:
    """Serialize a protocol model to a compact JSON text frame."""
    return message.model_dump_json(exclude_none=True)
