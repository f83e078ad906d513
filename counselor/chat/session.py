# counselor/chat/session.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from counselor.chat.gateway import CompletionGateway, parse_assistant_reply
from counselor.chat.interventions import InterventionEngine
from counselor.chat.persistence import PersistableSnapshot, PersistenceAdapter
from counselor.chat.realtime import AudioSink, RealtimeVoiceBridge, SessionFactory
from counselor.chat.state import AssistantReply, ChatRole, ChatTurn, MessageStore, TurnStatus
from counselor.chat.summarizer import SummarizationPipeline
from counselor.chat.timers import LoopScheduler, Scheduler
from counselor.config import Settings, get_settings
from counselor.errors import RequestFailure, SessionFailure
from counselor.services.storage import LocalStorage, read_hospital_name

logger = logging.getLogger(__name__)

BASE_SYSTEM_PROMPT = """당신은 자살 시도 이후 응급하게 병원에 입원한 환자의 상담사입니다.
당신의 목표는 환자의 정서를 안정시키고, 환자가 겪었던 사건을 파악하고 공감하는 것입니다.
공감한 이후에는 환자의 사고(생각)과 감정을 파악하여 환자의 인지적 왜곡을 찾고, 이를 해결하는 것입니다.
모든 답변은 JSON 포맷으로 {message: string, score: int}로 score에는 환자의 부정적 감정의 정도를 100점 만점으로 평가하여 넣어주세요."""

VOICE_SYSTEM_PROMPT = """당신은 자살 시도 이후 응급하게 병원에 입원한 환자의 상담사입니다.
당신의 목표는 환자의 정서를 안정시키고, 환자가 겪었던 사건을 파악하고 공감하는 것입니다.
공감한 이후에는 환자의 사고(생각)과 감정을 파악하여 환자의 인지적 왜곡을 찾고, 이를 해결하는 것입니다.
한국어만을 사용하여 대화를 진행합니다."""

GREETING = "안녕하세요! 당신의 이야기가 듣고 싶어요. 무엇이 당신을 힘들게 했나요?"


def _default_session_factory(**kwargs):
    # imported lazily so the chat core doesn't need the realtime SDK loaded
    from counselor.llm.realtime import OpenAIRealtimeSession

    return OpenAIRealtimeSession(**kwargs)


class ChatSession:
    """
    One counseling conversation.

    Coordinates:
      - the message store (text turns)
      - completion requests through the gateway
      - distress-score interventions
      - the background summary
      - saving the record when the session ends
      - the optional realtime voice channel
    """

    def __init__(
        self,
        gateway: CompletionGateway,
        storage: LocalStorage,
        settings: Optional[Settings] = None,
        scheduler: Optional[Scheduler] = None,
        session_factory: Optional[SessionFactory] = None,
        audio: Optional[AudioSink] = None,
        system_prompt: str = BASE_SYSTEM_PROMPT,
        voice_prompt: str = VOICE_SYSTEM_PROMPT,
    ):
        self.settings = settings or get_settings()
        self.gateway = gateway
        self.system_prompt = system_prompt
        self.voice_prompt = voice_prompt

        self.store = MessageStore(
            [ChatTurn(role=ChatRole.ASSISTANT, content=GREETING, status=TurnStatus.DONE)]
        )
        self.loading = False
        self.closed = False
        self.notice: Optional[str] = None
        self.hospital_name = read_hospital_name(storage)

        self.interventions = InterventionEngine(scheduler or LoopScheduler())
        self.summarizer = SummarizationPipeline(
            gateway.request_completion, model=self.settings.chat_model
        )
        self.persistence = PersistenceAdapter(storage, self.snapshot)
        self.voice = RealtimeVoiceBridge(
            gateway,
            session_factory or _default_session_factory,
            settings=self.settings,
            audio=audio,
            on_error=self._set_notice,
        )

        self.store.subscribe(self.summarizer.update)

    # ------------------------------------------------------------------
    # Text chat
    # ------------------------------------------------------------------

    def api_messages(self) -> List[Dict[str, str]]:
        """
        System prompt followed by every settled turn, in order.
        """
        messages = []
        if self.system_prompt.strip():
            messages.append({"role": ChatRole.SYSTEM.value, "content": self.system_prompt.strip()})
        messages.extend(t.to_api() for t in self.store.done_turns())
        return messages

    async def submit(self, text: str) -> Optional[AssistantReply]:
        """
        Send one user message and resolve its assistant placeholder.
        Ignored when blank or while a previous message is still in flight.
        """
        trimmed = text.strip()
        if not trimmed or self.loading or self.closed:
            return None

        payload = self.api_messages() + [{"role": ChatRole.USER.value, "content": trimmed}]

        self.store.append(
            ChatTurn(role=ChatRole.USER, content=trimmed, status=TurnStatus.DONE),
            ChatTurn(role=ChatRole.ASSISTANT, content="", status=TurnStatus.PENDING),
        )
        self.notice = None
        self.loading = True

        try:
            raw = await self.gateway.request_completion(self.settings.chat_model, payload)
        except RequestFailure as exc:
            logger.error("Chat completion failed: %s", exc.reason)
            if not self.closed:
                self.store.update_last(ChatRole.ASSISTANT, status=TurnStatus.ERROR, content=exc.reason)
                self.notice = exc.reason
            return None
        finally:
            self.loading = False

        # close() ran while we were waiting: the summarizer and overlays are gone
        if self.closed:
            logger.info("Session closed before the reply arrived; dropping it")
            return None

        reply = parse_assistant_reply(raw)
        self.store.update_last(ChatRole.ASSISTANT, status=TurnStatus.DONE, content=reply.message)
        self.interventions.apply(reply.score)
        return reply

    def visible_turns(self) -> List[ChatTurn]:
        """
        Text turns and voice turns in one list, oldest first.
        """
        return sorted(self.store.snapshot() + list(self.voice.history), key=lambda t: t.created_at)

    # ------------------------------------------------------------------
    # Voice
    # ------------------------------------------------------------------

    async def toggle_voice(self) -> None:
        if self.closed:
            return
        if self.voice.active:
            self.voice.log_history()
            await self.voice.teardown()
            return

        self.notice = None
        try:
            await self.voice.connect(self.voice_prompt.strip())
        except SessionFailure as exc:
            self.notice = str(exc)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def snapshot(self) -> PersistableSnapshot:
        return PersistableSnapshot(
            messages=self.store.snapshot(),
            hospital_name=self.hospital_name,
            summary=self.summarizer.state,
        )

    def unload(self) -> bool:
        """
        Hook for the host going away without a clean close().
        """
        return self.persistence.persist()

    async def close(self) -> None:
        self.closed = True
        self.persistence.persist()
        self.summarizer.cancel()
        self.interventions.stop_all()
        await self.voice.teardown()

    def _set_notice(self, message: str) -> None:
        self.notice = message
