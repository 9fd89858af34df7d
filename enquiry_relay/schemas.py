"""
Pydantic schemas for request/response validation.

This module contains:
- Message metadata models (tagged by "kind")
- Request models for incoming data validation
- Response models for API responses
"""

import json
from typing import Annotated, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter


# =============================================================================
# Message Metadata
# =============================================================================

class TextMetadata(BaseModel):
    """Sender details attached to an inbound text message."""
    kind: Literal["text"] = "text"
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    message_id: Optional[int] = None


class ContactMetadata(BaseModel):
    """Details reported on a shared contact card."""
    kind: Literal["contact"] = "contact"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    user_id: Optional[int] = None


class AdminMetadata(BaseModel):
    """Marks a message sent by the operator from the dashboard."""
    kind: Literal["admin"] = "admin"
    from_: Literal["admin"] = Field(default="admin", alias="from")
    sent_by: str = "dashboard"

    model_config = ConfigDict(populate_by_name=True)


MessageMetadata = Annotated[
    Union[TextMetadata, ContactMetadata, AdminMetadata],
    Field(discriminator="kind"),
]

_metadata_adapter = TypeAdapter(MessageMetadata)


def dump_metadata(metadata: Union[TextMetadata, ContactMetadata, AdminMetadata]) -> str:
    """Serialize metadata for the messages.metadata text column."""
    return metadata.model_dump_json(by_alias=True)


def load_metadata(raw: Optional[str]):
    """
    Parse a stored metadata column.

    Returns None for empty columns; rows written without a "kind" tag come
    back as the plain decoded JSON.
    """
    if not raw:
        return None
    decoded = json.loads(raw)
    if isinstance(decoded, dict) and "kind" in decoded:
        return _metadata_adapter.validate_python(decoded)
    return decoded


# =============================================================================
# Pydantic Request Models
# =============================================================================

class QRRequest(BaseModel):
    """Body of POST /qr. Both fields are optional."""
    text: Optional[str] = None
    channel_handle: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("channelHandle", "channelUsername", "channel_handle"),
        description="Telegram channel/bot handle used when no text is given",
    )


class SendMessageRequest(BaseModel):
    """
    Body of POST /send.

    Fields are optional at the schema level so that missing values are
    reported as 400 by the handler rather than as a schema error.
    """
    user_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("userId", "user_id"),
    )
    message: Optional[str] = None

    model_config = ConfigDict(coerce_numbers_to_str=True)


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    success: bool = False
    error: str


class QRResponse(BaseModel):
    success: bool = True
    qrCode: str = Field(..., description="PNG data URL")
    text: str = Field(..., description="Text encoded in the QR code")


class MessageResponse(BaseModel):
    """A stored message as returned by GET /messages."""
    id: int
    user_id: str
    chat_id: str
    message_type: str
    content: Optional[str] = None
    metadata: Optional[Union[TextMetadata, ContactMetadata, AdminMetadata, dict]] = None
    sender_type: Optional[str] = None
    timestamp: str

    @classmethod
    def from_row(cls, row) -> "MessageResponse":
        return cls(
            id=row.id,
            user_id=row.user_id,
            chat_id=row.chat_id,
            message_type=row.message_type,
            content=row.content,
            metadata=load_metadata(row.metadata_json),
            sender_type=row.sender_type,
            timestamp=row.timestamp,
        )


class MessagesListResponse(BaseModel):
    success: bool = True
    messages: list[MessageResponse] = Field(default_factory=list)


class LatestMessage(BaseModel):
    message_text: Optional[str] = None
    created_at: str
    sender_type: Optional[str] = None


class UserResponse(BaseModel):
    """A user annotated with their most recent message."""
    id: int
    user_id: str
    chat_id: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    last_interaction: str
    latest_message: Optional[LatestMessage] = None

    model_config = ConfigDict(from_attributes=True)


class UsersListResponse(BaseModel):
    success: bool = True
    users: list[UserResponse] = Field(default_factory=list)


class SendMessageResponse(BaseModel):
    success: bool = True
    message: str


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    timestamp: Optional[str] = None
    bot: Optional[str] = None
    reason: Optional[str] = Field(None, description="Reason if not ready")
