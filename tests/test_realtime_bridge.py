import pytest

from counselor.chat.realtime import (
    ASSISTANT_PLACEHOLDER,
    EMPTY_SECRET_ERROR,
    SDP_HINT,
    USER_PLACEHOLDER,
    RealtimeVoiceBridge,
    aggregate_item_text,
    extract_client_secret,
    merge_turn,
)
from counselor.chat.state import ChatRole, ChatTurn, TurnStatus
from counselor.errors import ServerError, SessionFailure


class FakeGateway:
    def __init__(self, payload=None, error=None):
        self.payload = payload if payload is not None else {"client_secret": {"value": "ek_1"}}
        self.error = error
        self.calls = 0

    async def request_realtime_session(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.payload


class FakeTransport:
    def __init__(self):
        self.closed = 0

    def close(self):
        self.closed += 1


class FakeSession:
    def __init__(self, client_secret, instructions, settings=None, audio=None, fail_with=None):
        self.client_secret = client_secret
        self.instructions = instructions
        self.transport = FakeTransport()
        self.handlers = {}
        self.fail_with = fail_with
        self.connected = False
        self.closed = 0

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event, payload):
        for handler in self.handlers.get(event, []):
            handler(payload)

    async def connect(self):
        if self.fail_with is not None:
            raise self.fail_with
        self.connected = True

    async def close(self):
        self.closed += 1


class FakeAudio:
    def __init__(self):
        self.stopped = 0

    def play(self, chunk):
        pass

    def stop(self):
        self.stopped += 1


def _factory(created, fail_with=None):
    def build(**kwargs):
        session = FakeSession(fail_with=fail_with, **kwargs)
        created.append(session)
        return session

    return build


def _item(item_id, role, status, content):
    return {"item_id": item_id, "type": "message", "role": role, "status": status, "content": content}


@pytest.fixture
def bridge_parts(settings):
    created = []
    errors = []
    audio = FakeAudio()
    bridge = RealtimeVoiceBridge(
        FakeGateway(),
        _factory(created),
        settings=settings,
        audio=audio,
        on_error=errors.append,
    )
    return bridge, created, errors, audio


def test_extract_client_secret_shapes():
    assert extract_client_secret({"client_secret": {"value": "a"}}) == "a"
    assert extract_client_secret({"client_secret": "b"}) == "b"
    assert extract_client_secret({"clientSecret": "c"}) == "c"
    assert extract_client_secret({"client_secret": {"value": ""}}) is None
    assert extract_client_secret(None) is None


def test_aggregate_item_text():
    user = _item("u", "user", "completed", [
        {"type": "input_text", "text": "안녕"},
        {"type": "input_audio", "transcript": "반가워"},
    ])
    assistant = _item("a", "assistant", "completed", [
        {"type": "output_text", "text": "네, "},
        {"type": "output_audio", "transcript": "말씀하세요"},
    ])
    assert aggregate_item_text(user) == "안녕 반가워"
    assert aggregate_item_text(assistant) == "네, 말씀하세요"


def test_merge_turn_placeholder_then_content():
    first = merge_turn(None, ChatTurn(id="u1", role=ChatRole.USER, content="", status=TurnStatus.PENDING))
    assert first.content == USER_PLACEHOLDER

    second = merge_turn(first, ChatTurn(id="u1", role=ChatRole.USER, content="안녕", status=TurnStatus.DONE, created_at=first.created_at + 50))
    assert second.content == "안녕"
    assert second.status == TurnStatus.DONE
    assert second.created_at == first.created_at


def test_merge_turn_never_regresses_status():
    done = ChatTurn(id="a1", role=ChatRole.ASSISTANT, content="끝", status=TurnStatus.DONE)
    again = merge_turn(done, ChatTurn(id="a1", role=ChatRole.ASSISTANT, content="", status=TurnStatus.PENDING))
    assert again.status == TurnStatus.DONE
    assert again.content == "끝"


async def test_connect_and_sync_history(bridge_parts):
    bridge, created, errors, audio = bridge_parts
    await bridge.connect("지시")

    assert bridge.active
    session = created[0]
    assert session.client_secret == "ek_1"
    assert session.instructions == "지시"
    assert bridge.transport is session.transport

    session.emit("history_updated", [
        _item("u1", "user", "in_progress", [{"type": "input_audio", "transcript": None}]),
        _item("a1", "assistant", "in_progress", []),
        {"item_id": "f1", "type": "function_call", "role": None, "status": "completed"},
    ])
    assert [t.content for t in bridge.history] == [USER_PLACEHOLDER, ASSISTANT_PLACEHOLDER]
    assert all(t.status == TurnStatus.PENDING for t in bridge.history)

    session.emit("history_updated", [
        _item("u1", "user", "completed", [{"type": "input_audio", "transcript": "잠이 안 와요"}]),
        _item("a1", "assistant", "in_progress", [{"type": "output_audio", "transcript": "그러셨군요"}]),
    ])
    assert bridge.history[0].content == "잠이 안 와요"
    assert bridge.history[0].status == TurnStatus.DONE
    assert bridge.history[1].id == "a1"

    session.emit("agent_end", "그러셨군요. 언제부터였나요?")
    assert bridge.history[1].content == "그러셨군요. 언제부터였나요?"
    assert bridge.history[1].status == TurnStatus.DONE

    # a late update can't pull the finished turn back to pending
    session.emit("history_updated", [
        _item("u1", "user", "completed", [{"type": "input_audio", "transcript": "잠이 안 와요"}]),
        _item("a1", "assistant", "in_progress", []),
    ])
    assert bridge.history[1].status == TurnStatus.DONE
    assert bridge.history[1].content == "그러셨군요. 언제부터였나요?"


async def test_agent_end_without_assistant_turn_is_ignored(bridge_parts):
    bridge, created, _, _ = bridge_parts
    await bridge.connect("지시")
    created[0].emit("agent_end", "무시됨")
    created[0].emit("agent_end", "   ")
    assert bridge.history == []


async def test_session_error_reports_message(bridge_parts):
    bridge, created, errors, _ = bridge_parts
    await bridge.connect("지시")
    created[0].emit("error", {"error": {"message": "rate limited"}})
    created[0].emit("error", {})
    assert errors == ["rate limited", "실시간 음성 세션에서 오류가 감지되었습니다."]


async def test_teardown_is_idempotent(bridge_parts):
    bridge, created, _, audio = bridge_parts
    await bridge.connect("지시")
    session = created[0]
    session.emit("history_updated", [_item("u1", "user", "completed", [{"type": "input_text", "text": "hi"}])])

    await bridge.teardown()
    await bridge.teardown()

    assert session.closed == 1
    assert session.transport.closed == 1
    assert not bridge.active
    assert bridge.history == []
    assert bridge.session is None
    assert audio.stopped == 2


async def test_events_after_teardown_are_dropped(bridge_parts):
    bridge, created, _, _ = bridge_parts
    await bridge.connect("지시")
    session = created[0]
    await bridge.teardown()

    session.emit("history_updated", [_item("u1", "user", "completed", [{"type": "input_text", "text": "late"}])])
    assert bridge.history == []


async def test_connect_twice_is_a_noop(bridge_parts):
    bridge, created, _, _ = bridge_parts
    await bridge.connect("지시")
    await bridge.connect("지시")
    assert len(created) == 1


async def test_empty_secret_fails(settings):
    created = []
    bridge = RealtimeVoiceBridge(FakeGateway(payload={"client_secret": {}}), _factory(created), settings=settings)
    with pytest.raises(SessionFailure) as excinfo:
        await bridge.connect("지시")
    assert str(excinfo.value) == EMPTY_SECRET_ERROR
    assert created == []
    assert not bridge.active


async def test_token_request_failure_uses_reason(settings):
    bridge = RealtimeVoiceBridge(FakeGateway(error=ServerError("no access", 500)), _factory([]), settings=settings)
    with pytest.raises(SessionFailure) as excinfo:
        await bridge.connect("지시")
    assert str(excinfo.value) == "no access"


async def test_sdp_failure_is_rewritten_and_torn_down(settings):
    created = []
    bridge = RealtimeVoiceBridge(
        FakeGateway(),
        _factory(created, fail_with=RuntimeError("Failed to parse SessionDescription. Expect line: v=")),
        settings=settings,
    )
    with pytest.raises(SessionFailure) as excinfo:
        await bridge.connect("지시")

    assert str(excinfo.value) == SDP_HINT
    assert created[0].closed == 1
    assert created[0].transport.closed == 1
    assert bridge.session is None
    assert not bridge.connecting
