from typing import Literal

from fastapi import HTTPException, status
from pydantic import BaseModel, Field

ErrorType = Literal["bad_request", "not_found", "internal_error", "service_unavailable"]

UNEXPECTED_ERROR_MESSAGE = "Internal server error, please try again later"


class ErrorResponse(BaseModel):
    """
    会话与部署接口的业务错误，放在 HTTPException.detail 中返回：
    {
        "error": "bad_request",
        "message": "Cannot delete model deployment that is referenced by existing chat sessions.",
        "code": 400
    }
    """

    error: ErrorType = Field(..., description="Error category, e.g. not_found")
    message: str = Field(..., description="Message shown to the chat UI")
    code: int = Field(..., description="HTTP status code")


class UnexpectedErrorResponse(BaseModel):
    """全局异常处理器的响应体，只暴露 error_id，细节留在日志里。"""

    error_code: Literal["internal_error"] = "internal_error"
    message: str = UNEXPECTED_ERROR_MESSAGE
    error_id: str = Field(..., description="Correlates the response with error.log")


def _http_error(status_code: int, error: ErrorType, message: str) -> HTTPException:
    payload = ErrorResponse(error=error, message=message, code=status_code)
    return HTTPException(status_code=status_code, detail=payload.model_dump())


def bad_request(message: str) -> HTTPException:
    """业务校验失败，例如空标题、会话 ID 不一致、部署名称重复。"""
    return _http_error(status.HTTP_400_BAD_REQUEST, "bad_request", message)


def not_found(message: str) -> HTTPException:
    return _http_error(status.HTTP_404_NOT_FOUND, "not_found", message)


def internal_error(message: str) -> HTTPException:
    return _http_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", message)


def service_unavailable(message: str) -> HTTPException:
    # 健康检查数据库不可达
    return _http_error(status.HTTP_503_SERVICE_UNAVAILABLE, "service_unavailable", message)


__all__ = [
    "ErrorResponse",
    "UNEXPECTED_ERROR_MESSAGE",
    "UnexpectedErrorResponse",
    "bad_request",
    "internal_error",
    "not_found",
    "service_unavailable",
]
