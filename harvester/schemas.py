# harvester/schemas.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class AuthStatusResponse(BaseModel):
    is_authenticated: bool


class AuthCodeResponse(BaseModel):
    status: str
    channel_id: int
    channel_title: Optional[str] = None


class PollingStatusResponse(BaseModel):
    phase: str
    is_polling: bool
    interval: float
    cursor: Optional[int] = None
    cycles: int
    last_error: Optional[str] = None


class ChannelOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    channel_id: int
    username: Optional[str] = None
    title: Optional[str] = None
    photo_url: Optional[str] = None


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    message_id: int
    channel_id: int
    date: datetime
    text: str
    media_url: Optional[str] = None
    photo_media_url: Optional[str] = None


class MessagesResponse(BaseModel):
    messages: List[MessageOut]
    total_pages: int


class MessageWithChannel(BaseModel):
    message: MessageOut
    channel_title: Optional[str] = None
    channel_photo_url: Optional[str] = None
