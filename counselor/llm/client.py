# counselor/llm/client.py
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from openai import OpenAI

from counselor.config import Settings, get_settings

logger = logging.getLogger(__name__)

ALLOWED_ROLES = ("user", "assistant", "system", "developer")

UNPARSEABLE_RESPONSE = "응답을 파싱하는 과정에서 오류가 발생했습니다."


class LLMConfigurationError(RuntimeError):
    pass


class LLMClient(ABC):
    """
    Simple abstraction so the routes can be tested without the provider.
    """

    @abstractmethod
    def respond(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
    ) -> str:
        """
        messages: list of {"role": ..., "content": "..."}
        returns: assistant output text
        """
        ...

    @abstractmethod
    def create_realtime_session(self) -> Dict[str, Any]:
        """
        Issue a short-lived realtime voice session; returns the provider's
        session payload (including `client_secret`).
        """
        ...


def normalize_role(role: str) -> str:
    if role in ALLOWED_ROLES:
        return role
    return "user"


def to_response_input(messages: List[Dict[str, str]]) -> List[Dict[str, Any]]:
    """
    Convert chat-style messages into Responses API input items.
    Assistant history goes back as output_text, everything else as input_text.
    """
    items = []
    for message in messages:
        role = message.get("role", "user")
        items.append(
            {
                "role": normalize_role(role),
                "content": [
                    {
                        "type": "output_text" if role == "assistant" else "input_text",
                        "text": message.get("content", ""),
                    }
                ],
            }
        )
    return items


def _get(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def extract_output_text(response: Any) -> str:
    """
    Pull the assistant text out of a Responses API result.

    Order: the `output_text` convenience field, then concatenated text blocks
    of `output[].content[]`, then a JSON dump of the whole response.
    """
    output_text = _get(response, "output_text")
    if isinstance(output_text, str) and output_text.strip():
        return output_text

    output = _get(response, "output")
    if isinstance(output, list):
        segments: List[str] = []
        for item in output:
            content = _get(item, "content")
            if not isinstance(content, list):
                continue
            for block in content:
                if _get(block, "type") in ("output_text", "text"):
                    text = _get(block, "text")
                    if isinstance(text, str):
                        segments.append(text)
        merged = "".join(segments).strip()
        if merged:
            return merged

    try:
        if hasattr(response, "model_dump_json"):
            return response.model_dump_json()
        return json.dumps(response, ensure_ascii=False)
    except (TypeError, ValueError):
        return UNPARSEABLE_RESPONSE


class OpenAILLMClient(LLMClient):
    """
    OpenAI implementation using the official Python client.
    """

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        if not settings.openai_api_key:
            raise LLMConfigurationError(
                "OpenAI API 키가 설정되어 있지 않습니다. 환경 변수 OPENAI_API_KEY를 확인해주세요."
            )

        self.client = OpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
        )
        self.settings = settings

    def respond(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
    ) -> str:
        response = self.client.responses.create(
            model=model or self.settings.openai_model,
            input=to_response_input(messages),
        )
        return extract_output_text(response)

    def create_realtime_session(self) -> Dict[str, Any]:
        session = self.client.beta.realtime.sessions.create(
            model=self.settings.realtime_model,
            voice=self.settings.realtime_voice,
            modalities=["audio", "text"],
            input_audio_format="pcm16",
            output_audio_format="pcm16",
            input_audio_transcription={"model": self.settings.transcribe_model},
        )
        return session.model_dump(mode="json")
