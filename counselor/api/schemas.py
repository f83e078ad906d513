# counselor/api/schemas.py
from __future__ import annotations

from typing import Optional, List, Dict

from pydantic import BaseModel, Field

from counselor.chat.schema import SettingFormData


class ChatMessageSchema(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    model: Optional[str] = None
    messages: List[ChatMessageSchema] = Field(default_factory=list)


class ChatResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    error: str


class SettingsResponse(SettingFormData):
    pass


class RecordPage(BaseModel):
    records: List[dict]
    page: int
    total_pages: int
    page_size: int


class RecordDetail(BaseModel):
    index: int
    record: dict
    sections: List[Dict[str, str]]
