# counselor/chat/realtime.py
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Protocol

from counselor.chat.gateway import CompletionGateway
from counselor.chat.state import ChatRole, ChatTurn, TurnStatus, now_ms
from counselor.config import Settings, get_settings
from counselor.errors import RequestFailure, SessionFailure

logger = logging.getLogger(__name__)

USER_PLACEHOLDER = "음성을 전사하는 중입니다..."
ASSISTANT_PLACEHOLDER = "응답을 준비하는 중입니다..."

EMPTY_SECRET_ERROR = "실시간 세션 인증 토큰이 비어있습니다."
CONNECT_FAILED_ERROR = "실시간 음성 세션 연결에 실패했습니다."
SESSION_ERROR = "실시간 음성 세션에서 오류가 감지되었습니다."
SDP_SYMPTOM = "expect line: v="
SDP_HINT = (
    "실시간 세션 초기화 중 오류가 발생했습니다. "
    "모델 접근 권한과 환경 변수를 다시 확인한 뒤 새로고침 해주세요."
)

STATUS_RANK = {TurnStatus.PENDING: 0, TurnStatus.ERROR: 1, TurnStatus.DONE: 2}


class AudioSink(Protocol):
    def play(self, chunk: bytes) -> None:
        ...

    def stop(self) -> None:
        ...


class RealtimeSession(Protocol):
    """
    What the bridge needs from a realtime voice session. Events:
      history_updated(items), agent_end(output_text), error(event)
    """

    transport: Any

    def on(self, event: str, handler: Callable[..., None]) -> None:
        ...

    async def connect(self) -> None:
        ...

    async def close(self) -> None:
        ...


SessionFactory = Callable[..., RealtimeSession]


def _get(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def extract_client_secret(payload: Any) -> Optional[str]:
    """
    The session payload carries the secret as client_secret.value,
    a bare client_secret string, or clientSecret.
    """
    if not isinstance(payload, dict):
        return None
    secret = payload.get("client_secret")
    if isinstance(secret, dict):
        secret = secret.get("value")
    if not secret:
        secret = payload.get("clientSecret")
    return secret if isinstance(secret, str) and secret else None


def rewrite_session_error(message: str) -> str:
    if SDP_SYMPTOM in message.lower():
        return SDP_HINT
    return message


def status_from_realtime(status: Optional[str]) -> TurnStatus:
    if status == "completed":
        return TurnStatus.DONE
    if status == "in_progress":
        return TurnStatus.PENDING
    return TurnStatus.ERROR


def aggregate_item_text(item: Any) -> str:
    """
    User items join typed text and audio transcripts with spaces; assistant
    items concatenate their text/audio-transcript parts.
    """
    role = _get(item, "role")
    parts: List[str] = []
    for block in _get(item, "content") or []:
        kind = _get(block, "type")
        if role == "user":
            if kind == "input_text":
                parts.append(_get(block, "text") or "")
            elif kind == "input_audio":
                parts.append(_get(block, "transcript") or "")
            else:
                parts.append("")
        else:
            if kind == "output_text":
                parts.append(_get(block, "text") or "")
            elif kind == "output_audio":
                parts.append(_get(block, "transcript") or "")
    separator = " " if role == "user" else ""
    return separator.join(parts).strip()


def merge_turn(previous: Optional[ChatTurn], incoming: ChatTurn) -> ChatTurn:
    """
    Combine a fresh mapping of a realtime item with what we had cached.

    Non-empty content wins; empty content keeps the cached text, or a
    placeholder on first sighting. Status only moves forward
    (pending -> error -> done), so a settled turn never drops back to
    pending. Id and creation time come from the first sighting.
    """
    if previous is None:
        placeholder = USER_PLACEHOLDER if incoming.role == ChatRole.USER else ASSISTANT_PLACEHOLDER
        return replace(incoming, content=incoming.content or placeholder)

    status = max(previous.status, incoming.status, key=STATUS_RANK.__getitem__)
    return replace(
        previous,
        content=incoming.content or previous.content,
        status=status,
    )


class RealtimeVoiceBridge:
    """
    Maps a realtime voice session's item stream onto ChatTurns.

    The bridge owns its own per-session cache of voice turns; the chat
    session reads `history` but never writes it.
    """

    def __init__(
        self,
        gateway: CompletionGateway,
        session_factory: SessionFactory,
        settings: Optional[Settings] = None,
        audio: Optional[AudioSink] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ):
        self._gateway = gateway
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._on_error = on_error
        self.audio = audio

        self.session: Optional[RealtimeSession] = None
        self.transport: Any = None
        self.active = False
        self.connecting = False

        self._cache: Dict[str, ChatTurn] = {}
        self.history: List[ChatTurn] = []

    # ------------------------------------------------------------------
    # Item stream
    # ------------------------------------------------------------------

    def map_item(self, item: Any) -> Optional[ChatTurn]:
        role = _get(item, "role")
        if role not in ("user", "assistant"):
            return None

        item_id = _get(item, "item_id") or _get(item, "itemId") or _get(item, "id")
        previous = self._cache.get(item_id)
        incoming = ChatTurn(
            id=item_id,
            role=ChatRole(role),
            content=aggregate_item_text(item),
            status=status_from_realtime(_get(item, "status")),
            created_at=now_ms(),
        )
        turn = merge_turn(previous, incoming)
        self._cache[item_id] = turn
        return turn

    def sync_history(self, items: List[Any]) -> None:
        turns: List[ChatTurn] = []
        for item in items:
            if _get(item, "type") != "message":
                continue
            turn = self.map_item(item)
            if turn is not None:
                turns.append(turn)

        self.history = sorted(turns, key=lambda t: t.created_at)

    def handle_agent_end(self, output: Any) -> None:
        """
        The final assistant text replaces whatever interim transcript the
        last assistant turn had.
        """
        text = output.strip() if isinstance(output, str) else ""
        if not text:
            return

        latest = next(
            (t for t in reversed(self.history) if t.role == ChatRole.ASSISTANT),
            None,
        )
        if latest is None:
            return

        updated = replace(latest, content=text, status=TurnStatus.DONE)
        self._cache[updated.id] = updated
        self.history = [updated if t.id == updated.id else t for t in self.history]

    def handle_error(self, event: Any) -> None:
        error = _get(event, "error")
        message = _get(_get(error, "error"), "message") or _get(error, "message") or SESSION_ERROR
        logger.error("Realtime session error: %s", message)
        if self._on_error is not None:
            self._on_error(message)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, instructions: str) -> None:
        """
        Fetch a credential, build the session and connect. Any failure
        tears down whatever was created and surfaces as SessionFailure.
        """
        if self.active or self.connecting:
            return

        self.connecting = True
        try:
            payload = await self._gateway.request_realtime_session()
            secret = extract_client_secret(payload)
            if not secret:
                raise SessionFailure(EMPTY_SECRET_ERROR)

            session = self._session_factory(
                client_secret=secret,
                instructions=instructions,
                settings=self._settings,
                audio=self.audio,
            )
            session.on("history_updated", self._bind(session, self.sync_history))
            session.on("agent_end", self._bind(session, self.handle_agent_end))
            session.on("error", self._bind(session, self.handle_error))

            self.session = session
            self.transport = getattr(session, "transport", None)

            await session.connect()
            self.active = True
        except Exception as exc:
            if isinstance(exc, RequestFailure):
                message = exc.reason
            else:
                message = str(exc) or CONNECT_FAILED_ERROR
            message = rewrite_session_error(message)
            logger.error("Realtime voice connect failed: %s", message)
            await self.teardown()
            raise SessionFailure(message) from exc
        finally:
            self.connecting = False

    def _bind(self, session: RealtimeSession, handler: Callable[[Any], None]) -> Callable[..., None]:
        # Events from a session we already tore down are dropped.
        def dispatch(payload: Any = None, *args: Any) -> None:
            if self.session is session:
                handler(payload)

        return dispatch

    async def teardown(self) -> None:
        """
        Close everything this voice session opened. Safe to call repeatedly.
        """
        self._cache = {}
        self.history = []

        session, self.session = self.session, None
        if session is not None:
            try:
                await session.close()
            except Exception as exc:
                logger.error("Error while closing realtime session: %s", exc)

        transport, self.transport = self.transport, None
        if transport is not None and hasattr(transport, "close"):
            try:
                result = transport.close()
                if hasattr(result, "__await__"):
                    await result
            except Exception as exc:
                logger.error("Error while closing realtime transport: %s", exc)

        if self.audio is not None:
            self.audio.stop()

        self.active = False
        self.connecting = False

    def log_history(self) -> None:
        if not self.history:
            logger.info("[Realtime Voice] no voice conversation recorded, skipping dump")
            return
        logger.info(
            "[Realtime Voice] session history: %s",
            [t.to_record() for t in self.history],
        )
