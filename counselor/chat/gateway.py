# counselor/chat/gateway.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from counselor.chat.state import AssistantReply
from counselor.config import Settings, get_settings
from counselor.errors import NetworkError, ServerError

logger = logging.getLogger(__name__)

CHAT_ENDPOINT = "/api/chat"
REALTIME_SESSION_ENDPOINT = "/api/realtime/session"

EMPTY_REPLY = "응답이 비어있습니다."
REALTIME_TOKEN_ERROR = "음성 세션 토큰을 발급받지 못했습니다."


def read_error_message(response: httpx.Response) -> Optional[str]:
    """
    Best human-readable reason from an error response: `error` string,
    `error.message`, a bare JSON string, then the raw body text.
    """
    try:
        data = response.json()
    except ValueError:
        data = None

    if isinstance(data, dict) and "error" in data:
        err = data["error"]
        if isinstance(err, str):
            return err
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
    if isinstance(data, str) and data:
        return data

    text = response.text
    return text or None


def clean_json_from_llm(raw: str) -> Any:
    """
    Parse JSON from an LLM response, tolerating ```json ... ``` fences.
    Raises json.JSONDecodeError if it still isn't JSON.
    """
    text = raw.strip()

    if text.startswith("```"):
        text = text.lstrip("`")
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.rstrip("`").strip()

    return json.loads(text)


def parse_assistant_reply(raw: Any) -> AssistantReply:
    """
    The counselor model is asked to answer with {"message": ..., "score": ...}.
    Anything else is shown as-is with an unknown score.
    """
    if not isinstance(raw, str) or not raw.strip():
        return AssistantReply(message=EMPTY_REPLY, score=None)

    text = raw.strip()
    try:
        parsed = clean_json_from_llm(text)
    except json.JSONDecodeError as exc:
        logger.warning("Assistant reply is not JSON: %s", exc)
        return AssistantReply(message=text, score=None)

    if not isinstance(parsed, dict):
        return AssistantReply(message=text, score=None)

    message = parsed.get("message")
    if not isinstance(message, str) or not message.strip():
        message = text
    else:
        message = message.strip()

    score = parsed.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        score = None

    return AssistantReply(message=message, score=score)


class CompletionGateway:
    """
    Client for our own API routes. One call, one normalized result:
    either the payload or a RequestFailure subclass with a readable reason.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = settings or get_settings()
        self._client = client or httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=httpx.Timeout(settings.request_timeout, connect=10.0),
        )

    async def _post(self, path: str, payload: Optional[dict] = None) -> httpx.Response:
        try:
            if payload is None:
                return await self._client.post(path)
            return await self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            raise NetworkError(str(exc) or None) from exc

    async def request_completion(
        self,
        model: Optional[str],
        messages: List[Dict[str, str]],
    ) -> str:
        payload: Dict[str, Any] = {"messages": messages}
        if model:
            payload["model"] = model

        response = await self._post(CHAT_ENDPOINT, payload)
        if response.is_error:
            raise ServerError(read_error_message(response), response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            raise ServerError(None, response.status_code) from exc

        message = data.get("message") if isinstance(data, dict) else None
        return message if isinstance(message, str) else ""

    async def request_realtime_session(self) -> Dict[str, Any]:
        response = await self._post(REALTIME_SESSION_ENDPOINT)
        if response.is_error:
            try:
                data = response.json()
            except ValueError:
                data = None
            reason = (
                data["error"]
                if isinstance(data, dict) and isinstance(data.get("error"), str)
                else REALTIME_TOKEN_ERROR
            )
            raise ServerError(reason, response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            raise ServerError(REALTIME_TOKEN_ERROR, response.status_code) from exc
        return data if isinstance(data, dict) else {}

    async def aclose(self) -> None:
        await self._client.aclose()
