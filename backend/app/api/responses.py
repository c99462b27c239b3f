"""Uniform JSON envelope for the REST API.

Success and error bodies share one shape::

    {"statusCode": 200, "data": ..., "message": "...", "success": true}
"""
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def api_response(status_code: int, data: Any, message: str = "Success") -> JSONResponse:
    """Wrap ``data`` in the success envelope."""
    return JSONResponse(
        status_code=status_code,
        content={
            "statusCode": status_code,
            "data": jsonable_encoder(data),
            "message": message,
            "success": status_code < 400,
        },
    )


def api_error(status_code: int, message: str) -> JSONResponse:
    """The error envelope (``data`` is always null)."""
    return JSONResponse(
        status_code=status_code,
        content={
            "statusCode": status_code,
            "data": None,
            "message": message,
            "success": False,
        },
    )
