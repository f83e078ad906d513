# counselor/chat/persistence.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from counselor.chat.schema import RecordStatus, StoredConversationRecord, StoredMessage
from counselor.chat.state import ChatRole, ChatTurn, TurnStatus, now_ms, serialize_turns
from counselor.chat.summarizer import ConversationSummary, TITLE_MAX_CHARS
from counselor.errors import StorageFailure
from counselor.services.storage import LocalStorage, CONVERSATION_STORAGE_KEY

logger = logging.getLogger(__name__)

RECORD_SUMMARY_FALLBACK_CHARS = 160
NO_TITLE = "제목 미생성"
NO_SUMMARY = "요약 정보가 준비되지 않았습니다."
NO_HOSPITAL = "병원 정보 없음"


@dataclass
class PersistableSnapshot:
    messages: List[ChatTurn] = field(default_factory=list)
    hospital_name: str = ""
    summary: ConversationSummary = field(default_factory=ConversationSummary)


def build_record(snapshot: PersistableSnapshot, today: Optional[str] = None) -> StoredConversationRecord:
    """
    Record for the dashboard. Title and summary come from the summarizer
    when it produced them, otherwise from the transcript itself.
    """
    messages = snapshot.messages
    summary = snapshot.summary

    if summary.title and summary.title.strip():
        title = summary.title
    else:
        first_user = next(
            (t.content for t in messages if t.role == ChatRole.USER and t.status == TurnStatus.DONE),
            None,
        )
        title = first_user[:TITLE_MAX_CHARS] if first_user is not None else NO_TITLE

    if summary.summary and summary.summary.strip():
        summary_text = summary.summary
    else:
        summary_text = serialize_turns(messages)[:RECORD_SUMMARY_FALLBACK_CHARS] or NO_SUMMARY

    hospital = snapshot.hospital_name if snapshot.hospital_name.strip() else NO_HOSPITAL

    return StoredConversationRecord(
        status=RecordStatus.IN_PROGRESS,
        title=title,
        date=today or datetime.now(timezone.utc).date().isoformat(),
        hospital=hospital,
        summary=summary_text,
        messages=[StoredMessage(**t.to_record()) for t in messages],
        lastUpdatedAt=now_ms(),
    )


class PersistenceAdapter:
    """
    Writes the conversation to the record store once per session.

    persist() is safe to call from every teardown path; the latch is only
    set after a successful write, and storage problems are logged instead of
    raised.
    """

    def __init__(
        self,
        storage: LocalStorage,
        snapshot: Callable[[], PersistableSnapshot],
    ):
        self._storage = storage
        self._snapshot = snapshot
        self.persisted = False

    def persist(self) -> bool:
        try:
            snapshot = self._snapshot()
            has_user_turn = any(
                t.role == ChatRole.USER and t.status == TurnStatus.DONE
                for t in snapshot.messages
            )
            if not has_user_turn or self.persisted:
                return False

            record = build_record(snapshot)
            records = self._read_records()
            records.insert(0, record.model_dump(mode="json"))
            self._storage.write_json(CONVERSATION_STORAGE_KEY, records)
            self.persisted = True
            logger.info("Saved conversation record %r", record.title)
            return True
        except StorageFailure as exc:
            logger.error("Failed to save conversation record: %s", exc)
            return False

    def _read_records(self) -> list:
        raw = self._storage.get_item(CONVERSATION_STORAGE_KEY)
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored conversation records are corrupt; starting a new list")
            return []
        return parsed if isinstance(parsed, list) else []
