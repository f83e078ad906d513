import json

import httpx
import pytest

from counselor.chat.gateway import (
    CompletionGateway,
    EMPTY_REPLY,
    REALTIME_TOKEN_ERROR,
    clean_json_from_llm,
    parse_assistant_reply,
)
from counselor.errors import GENERIC_REQUEST_ERROR, NetworkError, ServerError


def _gateway(handler, settings):
    client = httpx.AsyncClient(
        base_url="http://testserver",
        transport=httpx.MockTransport(handler),
    )
    return CompletionGateway(settings=settings, client=client)


async def test_request_completion_posts_model_and_messages(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"message": "답변"})

    gateway = _gateway(handler, settings)
    messages = [{"role": "user", "content": "안녕"}]
    assert await gateway.request_completion("gpt-4.1-mini", messages) == "답변"
    assert seen["path"] == "/api/chat"
    assert seen["body"] == {"model": "gpt-4.1-mini", "messages": messages}
    await gateway.aclose()


async def test_request_completion_omits_missing_model(settings):
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"message": "ok"})

    gateway = _gateway(handler, settings)
    await gateway.request_completion(None, [{"role": "user", "content": "x"}])
    assert "model" not in seen["body"]


async def test_request_completion_non_string_message_is_empty(settings):
    gateway = _gateway(lambda r: httpx.Response(200, json={"message": 3}), settings)
    assert await gateway.request_completion(None, []) == ""


@pytest.mark.parametrize(
    "response, reason",
    [
        (httpx.Response(500, json={"error": "quota exceeded"}), "quota exceeded"),
        (httpx.Response(502, json={"error": {"message": "bad gateway"}}), "bad gateway"),
        (httpx.Response(503, text="upstream down"), "upstream down"),
        (httpx.Response(500), GENERIC_REQUEST_ERROR),
    ],
)
async def test_request_completion_error_reasons(settings, response, reason):
    gateway = _gateway(lambda r: response, settings)
    with pytest.raises(ServerError) as excinfo:
        await gateway.request_completion(None, [])
    assert excinfo.value.reason == reason
    assert excinfo.value.status_code == response.status_code


async def test_transport_error_becomes_network_error(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    gateway = _gateway(handler, settings)
    with pytest.raises(NetworkError) as excinfo:
        await gateway.request_completion(None, [])
    assert "connection refused" in excinfo.value.reason


async def test_request_realtime_session(settings):
    payload = {"client_secret": {"value": "ek_1"}}
    gateway = _gateway(lambda r: httpx.Response(200, json=payload), settings)
    assert await gateway.request_realtime_session() == payload


async def test_request_realtime_session_error_without_reason(settings):
    gateway = _gateway(lambda r: httpx.Response(500, text="oops"), settings)
    with pytest.raises(ServerError) as excinfo:
        await gateway.request_realtime_session()
    assert excinfo.value.reason == REALTIME_TOKEN_ERROR


def test_clean_json_from_llm_strips_fences():
    assert clean_json_from_llm('```json\n{"a": 1}\n```') == {"a": 1}
    assert clean_json_from_llm('{"a": 2}') == {"a": 2}


def test_parse_assistant_reply_json():
    reply = parse_assistant_reply('{"message": " 힘드셨겠어요 ", "score": 93}')
    assert reply.message == "힘드셨겠어요"
    assert reply.score == 93


def test_parse_assistant_reply_plain_text_has_no_score():
    reply = parse_assistant_reply("그냥 텍스트")
    assert reply.message == "그냥 텍스트"
    assert reply.score is None


def test_parse_assistant_reply_empty():
    assert parse_assistant_reply("   ").message == EMPTY_REPLY


@pytest.mark.parametrize("score", ['"97"', "true", "null"])
def test_parse_assistant_reply_rejects_non_numeric_score(score):
    reply = parse_assistant_reply('{"message": "m", "score": %s}' % score)
    assert reply.message == "m"
    assert reply.score is None


def test_parse_assistant_reply_missing_message_falls_back_to_raw():
    raw = '{"score": 50}'
    reply = parse_assistant_reply(raw)
    assert reply.message == raw
    assert reply.score == 50
