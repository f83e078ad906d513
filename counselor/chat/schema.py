# counselor/chat/schema.py
from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class RecordStatus(str, Enum):
    IN_PROGRESS = "진행중"
    COMPLETE = "완료"


class StoredMessage(BaseModel):
    id: str
    role: str
    content: str
    status: str
    createdAt: int


class StoredConversationRecord(BaseModel):
    """
    One finished chat session as the dashboard reads it back from the
    `conversationRecords` list. Field names match the stored JSON.
    """

    status: RecordStatus = RecordStatus.IN_PROGRESS
    title: str
    date: str
    hospital: str
    summary: str = ""
    messages: List[StoredMessage] = Field(default_factory=list)
    lastUpdatedAt: Optional[int] = None

    model_config = {
        "extra": "ignore",
        "use_enum_values": True,
    }


class SettingFormData(BaseModel):
    """
    Patient/session settings saved from the settings form.
    """

    name: str = ""
    gender: str = ""
    birthDate: str = ""
    ktasCode: str = ""
    notes: str = ""
    hospitalName: str = ""

    model_config = {
        "extra": "ignore",
    }
