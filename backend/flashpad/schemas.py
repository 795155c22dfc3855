"""Pydantic schemas for the Flash Sandbox API and stream protocol."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel

USERNAME_PATTERN = r"^[A-Za-z0-9_.-]{3,32}$"


class AuthFeatureResponse(BaseModel):
    enabled: bool


class AuthSignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    username: Optional[str] = Field(None, pattern=USERNAME_PATTERN)


class AuthSignInRequest(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    user_id: str
    email: str
    username: str | None = None


class AuthTokenResponse(BaseModel):
    token: str
    user: UserResponse


class ProfileUpdateRequest(BaseModel):
    username: str = Field(..., pattern=USERNAME_PATTERN)


class SandboxCreateRequest(BaseModel):
    name: str


class SandboxResponse(BaseModel):
    id: str
    name: str
    owner_id: str
    shared: bool = False
    created_at: datetime
    updated_at: datetime


class AccessResponse(BaseModel):
    access: bool = True
    role: Literal["owner", "viewer"]


class ShareRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[EmailStr] = None

    @model_validator(mode="after")
    def _require_recipient(self) -> "ShareRequest":
        if not self.username and not self.email:
            raise ValueError("A recipient username or email is required.")
        return self


class ShareResponse(BaseModel):
    success: bool
    message: str


class DeleteResponse(BaseModel):
    success: bool


class PublicConfigResponse(BaseModel):
    ttl_seconds: int
    max_content_size: int


# Stream protocol. Outbound keys are camelCase on the wire.


class StreamMessage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class StateMessage(StreamMessage):
    type: Literal["state"] = "state"
    content: str
    updated_by: str
    updated_at: datetime
    users: int


class ClearedMessage(StreamMessage):
    type: Literal["cleared"] = "cleared"
    by: str
    at: datetime


class PresenceMessage(StreamMessage):
    type: Literal["presence"] = "presence"
    users: int


class ErrorMessage(StreamMessage):
    type: Literal["error"] = "error"
    message: str


class EditMessage(BaseModel):
    type: Literal["edit"]
    content: str


class ClearMessage(BaseModel):
    type: Literal["clear"]


ClientMessage = Annotated[Union[EditMessage, ClearMessage], Field(discriminator="type")]
_client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_message(raw: str | bytes) -> EditMessage | ClearMessage:
    """Parse an inbound frame; raises ``pydantic.ValidationError`` when malformed."""
    return _client_message_adapter.validate_json(raw)
