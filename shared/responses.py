"""
Response envelope helpers.

Successful calls answer ``{"success": true, "message"?: ..., "data": ...}``;
failures use ``shared.errors.ErrorResponse``.
"""

from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success_response(data: Any = None, message: Optional[str] = None, status_code: int = 200) -> JSONResponse:
    """Wrap ``data`` in the success envelope."""
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = jsonable_encoder(data)
    return JSONResponse(status_code=status_code, content=body)
