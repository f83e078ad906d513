# counselor/llm/realtime.py
from __future__ import annotations

import asyncio
import base64
import copy
import logging
from typing import Any, Callable, Dict, List, Optional

from openai import AsyncOpenAI

from counselor.config import Settings, get_settings

logger = logging.getLogger(__name__)

DEFAULT_MODALITIES = ["audio", "text"]

# Content part types the realtime API uses for assistant items, mapped to the
# names the voice bridge expects.
_ASSISTANT_PART_TYPES = {"text": "output_text", "audio": "output_audio"}


def normalize_session_update(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rewrite a session.update event into the shape the realtime endpoint
    accepts: no `session.type`, `modalities` instead of `output_modalities`
    (always including "text" alongside "audio"), and the nested
    `audio.input` / `audio.output` config flattened into top-level fields.
    Other events pass through untouched.
    """
    if not isinstance(event, dict) or event.get("type") != "session.update":
        return event
    if not isinstance(event.get("session"), dict):
        return event

    result = dict(event)
    session = copy.deepcopy(event["session"])
    result["session"] = session

    session.pop("type", None)
    if "output_modalities" in session:
        session["modalities"] = session.pop("output_modalities")

    modalities = session.get("modalities")
    if isinstance(modalities, list):
        has_audio = "audio" in modalities
        has_text = "text" in modalities
        if has_audio and not has_text:
            session["modalities"] = modalities + ["text"]
        if not has_audio and not has_text:
            session["modalities"] = list(DEFAULT_MODALITIES)
    elif not modalities:
        session["modalities"] = list(DEFAULT_MODALITIES)

    audio = session.pop("audio", None)
    if isinstance(audio, dict):
        audio_in = audio.get("input") or {}
        audio_out = audio.get("output") or {}
        if isinstance(audio_in.get("transcription"), dict):
            session["input_audio_transcription"] = audio_in["transcription"]
        if isinstance(audio_in.get("format"), str):
            session["input_audio_format"] = audio_in["format"]
        if isinstance(audio_out.get("voice"), str):
            session["voice"] = audio_out["voice"]
        if isinstance(audio_out.get("format"), str):
            session["output_audio_format"] = audio_out["format"]

    return result


def websocket_base_url(realtime_url: str) -> str:
    """
    The SDK appends "/realtime" to its websocket base, so
    https://api.openai.com/v1/realtime becomes wss://api.openai.com/v1.
    """
    url = realtime_url.rstrip("/")
    if url.endswith("/realtime"):
        url = url[: -len("/realtime")]
    if url.startswith("https://"):
        url = "wss://" + url[len("https://"):]
    elif url.startswith("http://"):
        url = "ws://" + url[len("http://"):]
    return url


def _get(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _as_item(raw: Any) -> Dict[str, Any]:
    role = _get(raw, "role")
    parts = []
    for part in _get(raw, "content") or []:
        kind = _get(part, "type")
        if role == "assistant":
            kind = _ASSISTANT_PART_TYPES.get(kind, kind)
        parts.append(
            {
                "type": kind,
                "text": _get(part, "text"),
                "transcript": _get(part, "transcript"),
            }
        )
    return {
        "item_id": _get(raw, "id"),
        "type": _get(raw, "type"),
        "role": role,
        "status": _get(raw, "status"),
        "content": parts,
    }


class RealtimeHistory:
    """
    Ordered conversation items rebuilt from realtime server events.

    apply() returns what the voice bridge should hear about:
    ("history_updated", items), ("agent_end", text), ("error", event) or
    None for events that don't change anything visible.
    """

    def __init__(self):
        self._items: Dict[str, Dict[str, Any]] = {}
        self._order: List[str] = []

    def items(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(self._items[i]) for i in self._order]

    def _upsert(self, raw: Any) -> None:
        item = _as_item(raw)
        item_id = item["item_id"]
        if not item_id:
            return
        if item_id not in self._items:
            self._order.append(item_id)
            self._items[item_id] = item
            return

        existing = self._items[item_id]
        existing["status"] = item["status"] or existing["status"]
        if item["content"]:
            existing["content"] = item["content"]

    def _append_delta(self, item_id: Optional[str], field: str, delta: str, kind: str) -> bool:
        item = self._items.get(item_id or "")
        if item is None or not delta:
            return False
        for part in item["content"]:
            if part["type"] == kind:
                part[field] = (part.get(field) or "") + delta
                return True
        item["content"].append({"type": kind, "text": None, "transcript": None, field: delta})
        return True

    def apply(self, event: Any):
        kind = _get(event, "type")

        if kind in ("conversation.item.created", "response.output_item.added", "response.output_item.done"):
            self._upsert(_get(event, "item"))
            return ("history_updated", self.items())

        if kind == "conversation.item.input_audio_transcription.completed":
            item = self._items.get(_get(event, "item_id") or "")
            if item is None:
                return None
            transcript = _get(event, "transcript") or ""
            parts = [p for p in item["content"] if p["type"] == "input_audio"]
            if parts:
                parts[0]["transcript"] = transcript
            else:
                item["content"].append({"type": "input_audio", "text": None, "transcript": transcript})
            item["status"] = "completed"
            return ("history_updated", self.items())

        if kind == "conversation.item.input_audio_transcription.failed":
            item = self._items.get(_get(event, "item_id") or "")
            if item is None:
                return None
            item["status"] = "incomplete"
            return ("history_updated", self.items())

        if kind == "response.audio_transcript.delta":
            if self._append_delta(_get(event, "item_id"), "transcript", _get(event, "delta") or "", "output_audio"):
                return ("history_updated", self.items())
            return None

        if kind == "response.text.delta":
            if self._append_delta(_get(event, "item_id"), "text", _get(event, "delta") or "", "output_text"):
                return ("history_updated", self.items())
            return None

        if kind == "response.done":
            output_text = []
            for out in _get(_get(event, "response"), "output") or []:
                for part in _get(out, "content") or []:
                    text = _get(part, "text") or _get(part, "transcript")
                    if isinstance(text, str):
                        output_text.append(text)
            return ("agent_end", "".join(output_text))

        if kind == "error":
            return ("error", {"error": _get(event, "error")})

        return None


class OpenAIRealtimeSession:
    """
    Realtime voice session over the OpenAI websocket API, exposing the
    event surface the voice bridge consumes.

    Audio output deltas are handed to the audio sink; microphone capture is
    the caller's concern (send_audio()).
    """

    def __init__(
        self,
        client_secret: str,
        instructions: str,
        settings: Optional[Settings] = None,
        audio: Any = None,
    ):
        self.settings = settings or get_settings()
        self.instructions = instructions
        self.audio = audio
        self.transport = AsyncOpenAI(
            api_key=client_secret,
            websocket_base_url=websocket_base_url(self.settings.realtime_base_url),
        )
        self._handlers: Dict[str, List[Callable[..., None]]] = {}
        self._history = RealtimeHistory()
        self._manager = None
        self._connection = None
        self._reader: Optional[asyncio.Task] = None

    def on(self, event: str, handler: Callable[..., None]) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def _emit(self, event: str, payload: Any) -> None:
        for handler in self._handlers.get(event, []):
            handler(payload)

    def session_config(self) -> Dict[str, Any]:
        return {
            "type": "session.update",
            "session": {
                "type": "realtime",
                "instructions": self.instructions,
                "output_modalities": ["audio"],
                "audio": {
                    "input": {
                        "transcription": {"model": self.settings.transcribe_model},
                        "format": "pcm16",
                    },
                    "output": {
                        "voice": self.settings.realtime_voice,
                        "format": "pcm16",
                    },
                },
            },
        }

    async def connect(self) -> None:
        self._manager = self.transport.beta.realtime.connect(model=self.settings.realtime_model)
        self._connection = await self._manager.enter()
        update = normalize_session_update(self.session_config())
        await self._connection.session.update(session=update["session"])
        self._reader = asyncio.get_running_loop().create_task(self._read_events())

    async def send_audio(self, chunk: bytes) -> None:
        if self._connection is None:
            return
        await self._connection.input_audio_buffer.append(
            audio=base64.b64encode(chunk).decode("ascii")
        )

    async def _read_events(self) -> None:
        try:
            async for event in self._connection:
                if _get(event, "type") == "response.audio.delta" and self.audio is not None:
                    self.audio.play(base64.b64decode(_get(event, "delta") or ""))
                    continue
                update = self._history.apply(event)
                if update is not None:
                    self._emit(*update)
        except Exception as exc:
            logger.error("Realtime event stream stopped: %s", exc)
            self._emit("error", {"error": {"message": str(exc)}})

    async def close(self) -> None:
        reader, self._reader = self._reader, None
        if reader is not None:
            reader.cancel()
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()
        self._manager = None
