"""
Pydantic input models for the relay's HTTP endpoints.

Depends on: config
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from peerlink.config import ROOM_ID_MAX_LENGTH


class SignalSendInput(BaseModel):
    """Body of POST /signal/send."""
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)
    room_id: str = Field(..., alias="roomId", min_length=1, description="Shared room token")
    message: Any = Field(..., description="Opaque session description or candidate payload")
    peer_id: Optional[str] = Field(default=None, alias="peerId", max_length=128,
                                   description="Sender token; the relay never echoes a message to its sender")

    @field_validator("room_id")
    @classmethod
    def _limit_room_id(cls, v: str) -> str:
        return v[:ROOM_ID_MAX_LENGTH]

    @field_validator("message")
    @classmethod
    def _require_message(cls, v: Any) -> Any:
        if v is None or v == "":
            raise ValueError("message must not be empty")
        return v


class SignalWaitInput(BaseModel):
    """Query string of GET /signal/wait."""
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)
    room_id: str = Field(..., alias="roomId", min_length=1)
    peer_id: Optional[str] = Field(default=None, alias="peerId", max_length=128)
    timeout: Optional[float] = Field(default=None, gt=0)
    peek: bool = False

    @field_validator("room_id")
    @classmethod
    def _limit_room_id(cls, v: str) -> str:
        return v[:ROOM_ID_MAX_LENGTH]
