from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, OperationalError


class EngineError(Exception):
    def __init__(self, code: str, message: str, *, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class UnknownReminderJobError(EngineError):
    def __init__(self, job_name: str):
        super().__init__(
            "UNKNOWN_REMINDER_JOB",
            f"Unknown reminder job: {job_name}",
            status_code=404,
        )
        self.job_name = job_name


def is_store_unavailable(exc: BaseException) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
