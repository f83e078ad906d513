# counselor/api/routes.py
from __future__ import annotations

import json
import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from counselor.chat.schema import SettingFormData
from counselor.errors import StorageFailure
from counselor.llm import LLMClient, OpenAILLMClient
from counselor.services import (
    LocalStorage,
    SETTINGS_STORAGE_KEY,
    PAGE_SIZE,
    load_records,
    paginate_records,
    toggle_record_status,
    parse_summary_sections,
    read_settings,
)
from counselor.services.dashboard import group_summary_sections
from .schemas import (
    ChatRequest,
    ChatResponse,
    ErrorResponse,
    SettingsResponse,
    RecordPage,
    RecordDetail,
)

logger = logging.getLogger(__name__)

router = APIRouter()

BAD_BODY_ERROR = "요청 본문을 파싱하지 못했습니다. JSON 형식으로 메시지를 전달해주세요."
EMPTY_MESSAGES_ERROR = "대화 메시지 배열이 필요합니다."
CHAT_FAILURE_ERROR = "OpenAPI 요청 중 예기치 못한 오류가 발생했습니다."
REALTIME_FAILURE_ERROR = "실시간 세션 생성 중 알 수 없는 오류가 발생했습니다."
RECORD_NOT_FOUND_ERROR = "대화 기록을 찾을 수 없습니다."
SETTINGS_SAVE_ERROR = "설정 정보를 저장하지 못했습니다."


@lru_cache(maxsize=1)
def _default_llm_client() -> OpenAILLMClient:
    return OpenAILLMClient()


def get_llm_client() -> LLMClient:
    return _default_llm_client()


def get_storage() -> LocalStorage:
    return LocalStorage()


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


@router.post(
    "/chat",
    response_model=ChatResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def chat(request: Request, llm_client: LLMClient = Depends(get_llm_client)):
    """
    Forward a conversation to the completion provider and return its text.
    """
    try:
        body = await request.json()
        payload = ChatRequest.model_validate(body or {})
    except (json.JSONDecodeError, ValidationError):
        return _error(BAD_BODY_ERROR, 400)

    if not payload.messages:
        return _error(EMPTY_MESSAGES_ERROR, 400)

    messages = [m.model_dump() for m in payload.messages]
    try:
        text = await run_in_threadpool(
            llm_client.respond, messages, payload.model or None
        )
    except Exception as exc:
        logger.error("OpenAI Responses call failed: %s", exc)
        return _error(str(exc) or CHAT_FAILURE_ERROR, 500)

    return ChatResponse(message=text)


@router.post("/realtime/session", responses={500: {"model": ErrorResponse}})
async def realtime_session(llm_client: LLMClient = Depends(get_llm_client)):
    """
    Issue a short-lived realtime voice credential from the server-held key.
    """
    try:
        session = await run_in_threadpool(llm_client.create_realtime_session)
    except Exception as exc:
        logger.error("Realtime session creation failed: %s", exc)
        return _error(str(exc) or REALTIME_FAILURE_ERROR, 500)
    return session


@router.get("/settings", response_model=SettingsResponse)
def get_settings_form(storage: LocalStorage = Depends(get_storage)) -> SettingsResponse:
    stored = read_settings(storage) or {}
    return SettingsResponse.model_validate(stored)


@router.put("/settings", response_model=SettingsResponse)
def save_settings_form(
    payload: SettingFormData,
    storage: LocalStorage = Depends(get_storage),
) -> SettingsResponse:
    try:
        storage.write_json(SETTINGS_STORAGE_KEY, payload.model_dump())
    except StorageFailure as exc:
        logger.error("Failed to save settings: %s", exc)
        return _error(SETTINGS_SAVE_ERROR, 500)
    return SettingsResponse(**payload.model_dump())


@router.get("/records", response_model=RecordPage)
def list_records(page: int = 0, storage: LocalStorage = Depends(get_storage)) -> RecordPage:
    records = load_records(storage)
    page_records, page, total_pages = paginate_records(records, page)
    return RecordPage(
        records=page_records,
        page=page,
        total_pages=total_pages,
        page_size=PAGE_SIZE,
    )


@router.get("/records/{index}", response_model=RecordDetail)
def get_record(index: int, storage: LocalStorage = Depends(get_storage)) -> RecordDetail:
    records = load_records(storage)
    if index < 0 or index >= len(records):
        return _error(RECORD_NOT_FOUND_ERROR, 404)

    record = records[index]
    sections = parse_summary_sections(record.get("summary"))
    return RecordDetail(
        index=index,
        record=record,
        sections=group_summary_sections(sections),
    )


@router.post("/records/{index}/toggle")
def toggle_record(index: int, storage: LocalStorage = Depends(get_storage)) -> dict:
    updated = toggle_record_status(storage, index)
    if updated is None:
        return _error(RECORD_NOT_FOUND_ERROR, 404)
    return updated
