# counselor/chat/state.py
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class TurnStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    ERROR = "error"


SPEAKER_LABELS = {
    ChatRole.USER: "사용자",
}
DEFAULT_SPEAKER_LABEL = "상담사"


def generate_turn_id() -> str:
    return str(uuid.uuid4())


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ChatTurn:
    role: ChatRole
    content: str
    status: TurnStatus
    id: str = field(default_factory=generate_turn_id)
    created_at: int = field(default_factory=now_ms)

    def to_record(self) -> Dict[str, Any]:
        """
        Shape used in stored conversation records.
        """
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "status": self.status.value,
            "createdAt": self.created_at,
        }

    def to_api(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


ChangeListener = Callable[[List[ChatTurn]], None]


class MessageStore:
    """
    Ordered log of chat turns for one session.

    Turns only ever enter through append() and are only ever changed through
    update_last(); nothing is removed or reordered. Listeners get a snapshot
    after every change.
    """

    def __init__(self, turns: Optional[List[ChatTurn]] = None):
        self._turns: List[ChatTurn] = list(turns or [])
        self._listeners: List[ChangeListener] = []

    def __len__(self) -> int:
        return len(self._turns)

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def snapshot(self) -> List[ChatTurn]:
        return list(self._turns)

    @property
    def last(self) -> Optional[ChatTurn]:
        return self._turns[-1] if self._turns else None

    def append(self, *turns: ChatTurn) -> None:
        self._turns.extend(turns)
        self._notify()

    def update_last(self, role: ChatRole, **patch: Any) -> bool:
        """
        Patch the last turn, but only if it has the given role.
        Returns whether anything changed.
        """
        last = self.last
        if last is None or last.role != role:
            return False
        self._turns[-1] = replace(last, **patch)
        self._notify()
        return True

    def has_pending(self) -> bool:
        return any(t.status == TurnStatus.PENDING for t in self._turns)

    def done_turns(self) -> List[ChatTurn]:
        return [t for t in self._turns if t.status == TurnStatus.DONE]

    def first_done_user_content(self) -> str:
        for turn in self.done_turns():
            if turn.role == ChatRole.USER:
                return turn.content
        return ""

    def has_done_user_turn(self) -> bool:
        return any(t.role == ChatRole.USER for t in self.done_turns())

    def serialize_done(self, min_turns: int = 2) -> str:
        """
        Done turns as "speaker: content" lines; empty below min_turns.
        """
        return serialize_turns(self.done_turns(), min_turns=min_turns)

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in self._listeners:
            listener(snapshot)


def serialize_turns(turns: List[ChatTurn], min_turns: int = 0) -> str:
    done = [t for t in turns if t.status == TurnStatus.DONE]
    if len(done) < min_turns:
        return ""
    return "\n".join(
        f"{SPEAKER_LABELS.get(t.role, DEFAULT_SPEAKER_LABEL)}: {t.content}"
        for t in done
    )


@dataclass
class AssistantReply:
    message: str
    score: Optional[float] = None


def turn_from_record(data: Dict[str, Any]) -> ChatTurn:
    return ChatTurn(
        id=data["id"],
        role=ChatRole(data["role"]),
        content=data["content"],
        status=TurnStatus(data["status"]),
        created_at=data["createdAt"],
    )
