"""Payloads of client frames received on the chat socket."""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from app.models import MessageKind

from .messages import FileInfoPayload


class _ClientEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str


class _TargetedEvent(_ClientEvent):
    receiver_id: int | None = Field(default=None, validation_alias=AliasChoices("receiverId", "receiver_id"))
    group_id: int | None = Field(default=None, validation_alias=AliasChoices("groupId", "group_id"))

    @model_validator(mode="after")
    def _exactly_one_target(self):
        if (self.receiver_id is None) == (self.group_id is None):
            raise ValueError("Provide exactly one of receiverId or groupId")
        return self


class AuthEvent(_ClientEvent):
    token: str = Field(..., min_length=1)


class SendMessageEvent(_TargetedEvent):
    content: str
    message_type: MessageKind = Field(
        default=MessageKind.TEXT, validation_alias=AliasChoices("messageType", "message_type")
    )
    reply_to: int | None = Field(default=None, validation_alias=AliasChoices("replyTo", "reply_to"))
    forwarded_from: int | None = Field(
        default=None, validation_alias=AliasChoices("forwardedFrom", "forwarded_from")
    )
    file_info: FileInfoPayload | None = Field(
        default=None, validation_alias=AliasChoices("fileInfo", "file_info")
    )
    client_id: str | None = Field(default=None, validation_alias=AliasChoices("clientId", "client_id"))


class TypingEvent(_TargetedEvent):
    pass


class MarkReadEvent(_ClientEvent):
    message_id: int = Field(..., validation_alias=AliasChoices("messageId", "message_id"))


class RoomEvent(_ClientEvent):
    other_user_id: int | None = Field(
        default=None, validation_alias=AliasChoices("otherUserId", "other_user_id")
    )
    group_id: int | None = Field(default=None, validation_alias=AliasChoices("groupId", "group_id"))

    @model_validator(mode="after")
    def _exactly_one_target(self):
        if (self.other_user_id is None) == (self.group_id is None):
            raise ValueError("Provide exactly one of otherUserId or groupId")
        return self
