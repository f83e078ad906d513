# counselor/chat/summarizer.py
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from counselor.chat.gateway import clean_json_from_llm
from counselor.chat.state import ChatRole, ChatTurn, TurnStatus, serialize_turns

logger = logging.getLogger(__name__)

SUMMARY_DEBOUNCE = 0.6  # seconds of quiet before we ask for a summary
MIN_TURNS_FOR_SUMMARY = 2
TITLE_MAX_CHARS = 16
SUMMARY_FALLBACK_CHARS = 120

FALLBACK_TITLE = "제목 미생성"
FALLBACK_SUMMARY = "요약을 확보하지 못했습니다."

SUMMARY_SYSTEM_PROMPT = (
    "당신은 정신건강 상담 기록을 요약하는 한국인 상담 매니저입니다. "
    "민감한 개인정보는 언급하지 말고, 1문장으로 핵심을 요약하세요. "
    "또한 16자 이내의 한국어 제목을 만들어주세요."
)

SUMMARY_INSTRUCTIONS = [
    "다음 상담 대화 내용을 요약해서 JSON 포맷으로 돌려주세요.",
    'JSON 스키마: {"title": string, "summary": string}',
    "title은 16자 이내의 한국어로 작성해주세요.",
    "summary는 아래 네 항목을 이 순서대로 작성하고, 각 내용의 앞에는 반드시 "
    "'과거 사건:', '인지 사고:', '감정 반응:', '대안 사고:' 형식을 따르세요. "
    "다른 텍스트나 배열 없이 JSON 문자열만 반환하세요.:",
    "과거 사건: 환자가 겪은 사건",
    "인지 사고: 환자의 사고 과정 및 인지 왜곡",
    "감정 반응: 환자가 느낀 감정",
    "대안 사고: 챗봇이 제안한 새로운 인지 사고",
    "또한 아래 CAMS-SSF-4 기반 환자 상태 요약 리포트를 summary에 포함하세요.",
    "환자 상태 요약 리포트 (CAMS-SSF-4 기반)",
    "● 심리적 고통 (Pain): 환자의 심리적 고통",
    "● 절망감 (Hopelessness): 환자의 절망감",
    "● 자기 비하 (Self-Hate): 환자의 자기 비하",
    "● 주요 스트레스원(S): 환자의 주요 스트레스원",
    "주요 호소 내용 (환자 어록)",
    "● 감정(E): 환자가 직접적으로 언급한 환자의 감정",
    "● 생각(T): 환자가 직접적으로 언급한 환자의 생각",
    "",
]

CompletionFn = Callable[[Optional[str], List[Dict[str, str]]], Awaitable[str]]


class SummaryStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class ConversationSummary:
    status: SummaryStatus = SummaryStatus.IDLE
    title: str = ""
    summary: str = ""
    error: Optional[str] = None


def fallback_title(first_user_content: str) -> str:
    if first_user_content.strip():
        return first_user_content[:TITLE_MAX_CHARS]
    return FALLBACK_TITLE


def fallback_summary(serialized: str) -> str:
    return serialized[:SUMMARY_FALLBACK_CHARS] or FALLBACK_SUMMARY


def build_summary_prompt(serialized: str) -> List[Dict[str, str]]:
    return [
        {"role": ChatRole.SYSTEM.value, "content": SUMMARY_SYSTEM_PROMPT},
        {
            "role": ChatRole.USER.value,
            "content": "\n".join(SUMMARY_INSTRUCTIONS + [serialized]),
        },
    ]


def parse_summary_response(
    raw: Optional[str],
    serialized: str,
    first_user_content: str,
) -> ConversationSummary:
    """
    Turn the model's answer into a ready summary, filling any missing or
    blank field from the transcript itself.
    """
    parsed: dict = {}
    if isinstance(raw, str) and raw.strip():
        try:
            candidate = clean_json_from_llm(raw)
            if isinstance(candidate, dict):
                parsed = candidate
        except json.JSONDecodeError as exc:
            logger.warning("Summary response is not JSON: %s", exc)

    title = parsed.get("title")
    summary = parsed.get("summary")
    return ConversationSummary(
        status=SummaryStatus.READY,
        title=title.strip() if isinstance(title, str) and title.strip() else fallback_title(first_user_content),
        summary=summary.strip() if isinstance(summary, str) and summary.strip() else fallback_summary(serialized),
    )


class SummarizationPipeline:
    """
    Keeps a title + summary in step with the done turns of a conversation.

    Every change to the serialized transcript cancels the pending debounce
    and any in-flight request, then starts a new one. A generation token is
    checked before committing so a superseded request can never overwrite a
    newer result.
    """

    def __init__(
        self,
        complete: CompletionFn,
        model: Optional[str] = None,
        debounce: float = SUMMARY_DEBOUNCE,
        on_change: Optional[Callable[[ConversationSummary], None]] = None,
    ):
        self._complete = complete
        self._model = model
        self._debounce = debounce
        self._on_change = on_change
        self._input = ""
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self.state = ConversationSummary()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def debounce(self) -> float:
        return self._debounce

    def update(self, turns: List[ChatTurn]) -> None:
        """
        Feed the latest transcript. Cheap to call on every store change:
        nothing happens unless the done-turn text actually changed.
        """
        serialized = serialize_turns(turns, min_turns=MIN_TURNS_FOR_SUMMARY)
        if serialized == self._input:
            return
        self._input = serialized

        first_user = next(
            (t.content for t in turns if t.status == TurnStatus.DONE and t.role == ChatRole.USER),
            "",
        )

        self.cancel()
        self._generation += 1

        if not serialized:
            self._set(ConversationSummary(error=self.state.error))
            return

        self._task = asyncio.get_running_loop().create_task(
            self._run(self._generation, serialized, first_user)
        )

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def drain(self) -> None:
        """
        Wait for the current computation (if any) to finish or be cancelled.
        """
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self, token: int, serialized: str, first_user: str) -> None:
        await asyncio.sleep(self._debounce)
        if token != self._generation:
            return

        self._set(
            ConversationSummary(
                status=SummaryStatus.LOADING,
                title=self.state.title,
                summary=self.state.summary,
                error=self.state.error,
            )
        )

        try:
            raw = await self._complete(self._model, build_summary_prompt(serialized))
        except Exception as e:
            if token != self._generation:
                return
            reason = getattr(e, "reason", None) or str(e) or "알 수 없는 오류가 발생했습니다."
            logger.error("Summary generation failed: %s", reason)
            self._set(
                ConversationSummary(
                    status=SummaryStatus.ERROR,
                    title=fallback_title(first_user),
                    summary=fallback_summary(serialized),
                    error=reason,
                )
            )
            return

        if token != self._generation:
            return
        self._set(parse_summary_response(raw, serialized, first_user))

    def _set(self, state: ConversationSummary) -> None:
        self.state = state
        if self._on_change is not None:
            self._on_change(state)
