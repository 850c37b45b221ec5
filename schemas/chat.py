from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


class MessageSender(BaseModel):
    id: str
    username: str
    full_name: str

    class Config:
        from_attributes = True


class MessageCreate(BaseModel):
    message: Optional[str] = Field(None, max_length=4000)
    attachment_path: Optional[str] = Field(None, max_length=500)
    attachment_type: Optional[str] = Field(None, max_length=50)


class MessageResponse(BaseModel):
    id: int
    delivery_id: str
    sender_id: str
    receiver_id: str
    message: str
    attachment_path: Optional[str] = None
    attachment_type: Optional[str] = None
    created_at: datetime
    sender: Optional[MessageSender] = None

    class Config:
        from_attributes = True


class MessageHistory(BaseModel):
    messages: List[MessageResponse]
    has_more: bool


class AttachmentResponse(BaseModel):
    path: str
    content_type: str
