from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    OTHER = "other"


class LineSource(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str = "user"
    user_id: Optional[str] = Field(default=None, alias="userId")


class LineMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    type: str
    text: Optional[str] = None


class LineEvent(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str
    timestamp: Optional[int] = None
    reply_token: Optional[str] = Field(default=None, alias="replyToken")
    source: Optional[LineSource] = None
    message: Optional[LineMessage] = None
    webhook_event_id: Optional[str] = Field(default=None, alias="webhookEventId")


class LineWebhookRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    destination: Optional[str] = None
    events: list[LineEvent] = Field(default_factory=list)


class WebhookResponse(BaseModel):
    success: bool
    accepted: int = 0
    message: Optional[str] = None


@dataclass
class InboundMessage:
    user_id: str
    kind: MessageKind
    text: Optional[str] = None
    message_id: Optional[str] = None
    timestamp: Optional[int] = None
    reply_token: Optional[str] = None

    @classmethod
    def from_event(cls, event: LineEvent) -> Optional["InboundMessage"]:
        """Message events from a user source only; everything else is not ours to handle."""
        if event.type != "message" or event.message is None:
            return None
        user_id = (event.source.user_id if event.source else None) or ""
        if event.message.type == "text":
            kind = MessageKind.TEXT
        elif event.message.type == "image":
            kind = MessageKind.IMAGE
        else:
            kind = MessageKind.OTHER
        return cls(
            user_id=user_id.strip(),
            kind=kind,
            text=event.message.text if kind == MessageKind.TEXT else None,
            message_id=event.message.id,
            timestamp=event.timestamp,
            reply_token=event.reply_token,
        )
