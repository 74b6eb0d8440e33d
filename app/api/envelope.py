"""
JSON response envelope shared by all API routes:

    {"success": true,  "message": "...", "data": ...}
    {"success": false, "message": "...", "error": ...}
"""
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class RequestModel(BaseModel):
    """Request bodies accept both camelCase and snake_case keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def success(message: str, data=None, status_code: int = 200) -> JSONResponse:
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = jsonable_encoder(data)
    return JSONResponse(status_code=status_code, content=body)


def failure(message: str, status_code: int, error=None) -> JSONResponse:
    body = {"success": False, "message": message}
    if error is not None:
        body["error"] = jsonable_encoder(error)
    return JSONResponse(status_code=status_code, content=body)
