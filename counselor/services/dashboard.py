# counselor/services/dashboard.py
from __future__ import annotations

import logging
import math
import re
from typing import Dict, List, Optional, Tuple

from counselor.chat.schema import RecordStatus
from counselor.errors import StorageFailure
from counselor.services.storage import LocalStorage, CONVERSATION_STORAGE_KEY

logger = logging.getLogger(__name__)

PAGE_SIZE = 8

SUMMARY_SECTION_KEYS: List[str] = [
    "과거 사건",
    "인지 사고",
    "감정 반응",
    "대안 사고",
    "환자 상태 요약 리포트 (CAMS-SSF-4 기반)",
    "심리적 고통 (Pain)",
    "절망감 (Hopelessness)",
    "자기 비하 (Self-Hate)",
    "주요 스트레스원(S)",
    "주요 호소 내용 (환자 어록)",
    "감정(E)",
    "생각(T)",
]

# A heading is inserted right before the section that opens each group.
SECTION_HEADINGS: Dict[str, Tuple[str, str]] = {
    "과거 사건": ("insight-analysis", "인지 행동 분석"),
    "심리적 고통 (Pain)": ("cams-summary", "환자 상태 요약 리포트 (CAMS-SSF-4 기반)"),
    "감정(E)": ("complaints", "주요 호소 내용"),
}

_SECTION_PATTERN = re.compile(
    r"(?:●\s*)?(?:" + "|".join(re.escape(k) for k in SUMMARY_SECTION_KEYS) + r")"
)
_BULLET_PREFIX = re.compile(r"^●\s*")


def _is_well_formed(record: object) -> bool:
    if not isinstance(record, dict):
        return False
    return all(
        isinstance(record.get(field), str)
        for field in ("status", "title", "date", "hospital")
    )


def load_records(storage: LocalStorage) -> List[dict]:
    """
    Read conversationRecords, dropping anything that isn't a usable record.
    Unreadable storage yields an empty list.
    """
    try:
        parsed = storage.read_json(CONVERSATION_STORAGE_KEY)
    except StorageFailure as exc:
        logger.error("Failed to load conversation records: %s", exc)
        return []

    if not isinstance(parsed, list):
        return []
    return [record for record in parsed if _is_well_formed(record)]


def paginate_records(records: List[dict], page: int) -> Tuple[List[dict], int, int]:
    """
    Returns (records on the page, clamped page index, total pages).
    """
    total_pages = max(1, math.ceil(len(records) / PAGE_SIZE))
    page = min(max(page, 0), total_pages - 1)
    start = page * PAGE_SIZE
    return records[start:start + PAGE_SIZE], page, total_pages


def toggle_record_status(storage: LocalStorage, index: int) -> Optional[dict]:
    """
    Flip 진행중 <-> 완료 for the record at an absolute index and write the
    list back. Returns the updated record, or None if the index is invalid.
    """
    records = load_records(storage)
    if index < 0 or index >= len(records):
        return None

    target = dict(records[index])
    target["status"] = (
        RecordStatus.COMPLETE.value
        if target["status"] == RecordStatus.IN_PROGRESS.value
        else RecordStatus.IN_PROGRESS.value
    )
    records[index] = target

    try:
        storage.write_json(CONVERSATION_STORAGE_KEY, records)
    except StorageFailure as exc:
        logger.error("Failed to save record status: %s", exc)
    return target


def parse_summary_sections(summary: Optional[str]) -> List[Dict[str, str]]:
    """
    Split a structured summary into its labeled sections.

    Always returns every known section in order; sections that don't occur
    in the text get empty content. Repeated keys are joined with newlines.
    """
    sections = [{"key": key, "label": key, "content": ""} for key in SUMMARY_SECTION_KEYS]
    if not summary or not isinstance(summary, str):
        return sections

    matches = []
    for match in _SECTION_PATTERN.finditer(summary):
        key = _BULLET_PREFIX.sub("", match.group(0))
        if key in SUMMARY_SECTION_KEYS:
            matches.append((key, match.start(), match.end()))

    if not matches:
        return sections

    content: Dict[str, str] = {}
    for idx, (key, _start, end) in enumerate(matches):
        stop = matches[idx + 1][1] if idx < len(matches) - 1 else len(summary)
        value = summary[end:stop]
        value = re.sub(r"^[\s:]+", "", value)
        value = re.sub(r"\s+", " ", value).strip()
        if value:
            content[key] = f"{content[key]}\n{value}" if key in content else value

    for section in sections:
        section["content"] = content.get(section["key"], "")
    return sections


def group_summary_sections(sections: List[Dict[str, str]]) -> List[Dict[str, str]]:
    """
    Non-empty sections interleaved with group headings, ready for display.
    """
    grouped: List[Dict[str, str]] = []
    for section in sections:
        if not section["content"]:
            continue
        heading = SECTION_HEADINGS.get(section["key"])
        if heading is not None:
            grouped.append({"type": "heading", "id": heading[0], "label": heading[1]})
        grouped.append(
            {
                "type": "section",
                "id": section["key"],
                "label": section["label"],
                "content": section["content"],
            }
        )
    return grouped
