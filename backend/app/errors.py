"""
Caller-facing error bodies.

Endpoints raise ``ApiError``; the handler registered in ``app.main`` turns it
into ``{"error": ..., "detail": ...}`` with the given status code.
"""

from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, error: str, detail: Optional[Any] = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.detail = detail


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "detail": exc.detail},
    )
