# app/core/response.py
from typing import Any, Optional, Literal, Dict
from pydantic import BaseModel, Field, ConfigDict
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
import traceback
from app.core.config import settings
from app.utils.datetime_utils import get_current_utc_datetime


class ErrorDetail(BaseModel):
    """Detailed error information for debugging"""
    field: Optional[str] = None
    message: str
    code: Optional[str] = None


class ResponseModel(BaseModel):
    status: Literal["success", "error"]
    msg: str
    data: Optional[Any] = None


class ErrorResponseModel(BaseModel):
    """Error envelope shared by every failing request"""
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["error"] = "error"
    code: str
    message: str
    timestamp: str
    request_id: Optional[str] = Field(None, alias="requestId")
    details: Optional[list[ErrorDetail]] = None
    data: Optional[Any] = None
    # Only include debug info in development
    debug_info: Optional[Dict[str, Any]] = None


def success_response(
    msg: str = "OK", data: Any = None, status_code: int = 200
) -> JSONResponse:
    """Create a success response"""
    payload = ResponseModel(status="success", msg=msg, data=data).model_dump(
        exclude_none=True
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def error_response(
    msg: str,
    status_code: int = 400,
    error_code: str = "INTERNAL_ERROR",
    request_id: Optional[str] = None,
    data: Any = None,
    details: Optional[list[ErrorDetail]] = None,
) -> JSONResponse:
    """Create an error response carrying code, message, timestamp and requestId"""
    debug_info = None
    if settings.DEBUG and status_code >= 500:
        debug_info = {
            "traceback": traceback.format_exc(),
            "environment": settings.ENVIRONMENT
        }

    payload = ErrorResponseModel(
        code=error_code,
        message=msg,
        timestamp=get_current_utc_datetime().isoformat(),
        request_id=request_id,
        details=details,
        data=data,
        debug_info=debug_info,
    ).model_dump(exclude_none=True, by_alias=True)

    headers = {"X-Request-ID": request_id} if request_id else None
    return JSONResponse(
        status_code=status_code, content=jsonable_encoder(payload), headers=headers
    )


def validation_error_response(
    errors: list[Dict[str, Any]],
    request_id: Optional[str] = None,
    status_code: int = 400,
) -> JSONResponse:
    """Create a standardized validation error response"""
    details = []
    for err in errors:
        loc = err.get("loc", [])
        field = ".".join(str(x) for x in loc if x != "body")
        details.append(ErrorDetail(
            field=field or (str(loc[-1]) if loc else None),
            message=err.get("msg", "Validation error"),
            code="VALIDATION_ERROR"
        ))

    return error_response(
        msg="Invalid request parameters",
        details=details,
        status_code=status_code,
        error_code="VALIDATION_ERROR",
        request_id=request_id,
    )
