# counselor/errors.py
from __future__ import annotations

from typing import Optional


GENERIC_REQUEST_ERROR = "OpenAI 요청 중 문제가 발생했습니다. 다시 시도해주세요."


class RequestFailure(Exception):
    """
    A call to one of our API routes did not produce a usable response.
    `reason` is always a human-readable message suitable for a banner.
    """

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or GENERIC_REQUEST_ERROR
        super().__init__(self.reason)


class NetworkError(RequestFailure):
    pass


class ServerError(RequestFailure):
    def __init__(self, reason: Optional[str] = None, status_code: int = 500):
        super().__init__(reason)
        self.status_code = status_code


class SessionFailure(Exception):
    """
    Realtime voice session could not be established.
    """


class StorageFailure(Exception):
    """
    Reading or writing the local record store failed.
    """
