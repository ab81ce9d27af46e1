"""Standard response envelope: {success, message, data?, errors?}"""
from typing import Any, List, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success_response(message: str, data: Any = None) -> dict:
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = jsonable_encoder(data)
    return body


def error_response(status_code: int, message: str, errors: Optional[List[str]] = None, data: Any = None) -> JSONResponse:
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    if data is not None:
        body["data"] = jsonable_encoder(data)
    return JSONResponse(status_code=status_code, content=body)
