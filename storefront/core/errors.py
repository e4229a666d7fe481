"""
storefront/core/errors.py — Error envelope and expected business errors
Every failure response in the API has the shape {success: false, message, ...}.
"""
from __future__ import annotations

from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse


def error_response(
    status_code: int,
    message: str,
    headers: dict[str, str] | None = None,
    **extra: Any,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, **extra},
        headers=headers,
    )


class ApiError(Exception):
    """
    Expected, client-facing failure raised by business code (unknown product,
    duplicate SKU, insufficient stock...). Converted to its status code at the
    handler boundary and not logged as a server error.
    """
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: int | None = None, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_response(self) -> JSONResponse:
        return error_response(self.status_code, self.message, **self.extra)


class NotFoundError(ApiError):
    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
