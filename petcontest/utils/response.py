from typing import Any, Optional
from fastapi.responses import JSONResponse

from petcontest.errors import CompetitionError
from petcontest.utils.serializers import serialize_document


def success_response(
    message: str = "Success",
    data: Any = None,
    status_code: int = 200
) -> JSONResponse:
    """
    Standard success response

    Args:
        message: Success message
        data: Response data (optional); Mongo documents are serialized
        status_code: HTTP status code (default: 200)

    Returns:
        JSONResponse with success format
    """
    response = {
        "success": True,
        "message": message
    }

    if data is not None:
        response["data"] = serialize_document(data)

    return JSONResponse(content=response, status_code=status_code)


def error_response(
    message: str = "Error",
    status_code: int = 400,
    code: Optional[str] = None
) -> JSONResponse:
    """
    Standard error response

    Args:
        message: Error message
        status_code: HTTP status code (default: 400)
        code: Machine-readable error code (optional)

    Returns:
        JSONResponse with error format
    """
    content = {
        "success": False,
        "message": message
    }
    if code:
        content["code"] = code

    return JSONResponse(content=content, status_code=status_code)


def competition_error_response(error: CompetitionError) -> JSONResponse:
    """Map a competition error to its HTTP status and code"""
    return error_response(message=error.message, status_code=error.status_code, code=error.code)


def unauthorized_response(
    message: str = "Authentication required"
) -> JSONResponse:
    """Standard unauthorized response (401)"""
    return error_response(message=message, status_code=401)


def service_unavailable_response(
    message: str = "Database not connected"
) -> JSONResponse:
    """Standard unavailable response (503)"""
    return error_response(message=message, status_code=503)
