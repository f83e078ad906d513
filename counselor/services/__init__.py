# counselor/services/__init__.py
from .storage import (
    LocalStorage,
    SETTINGS_STORAGE_KEY,
    CONVERSATION_STORAGE_KEY,
    read_settings,
    read_hospital_name,
)
from .dashboard import (
    PAGE_SIZE,
    load_records,
    paginate_records,
    toggle_record_status,
    parse_summary_sections,
)

__all__ = [
    "LocalStorage",
    "SETTINGS_STORAGE_KEY",
    "CONVERSATION_STORAGE_KEY",
    "read_settings",
    "read_hospital_name",
    "PAGE_SIZE",
    "load_records",
    "paginate_records",
    "toggle_record_status",
    "parse_summary_sections",
]
