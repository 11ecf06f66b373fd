import logging
import traceback
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from .exceptions import BaseAPIException, ConflictError, InternalServerError

logger = logging.getLogger("arenaapi")


def _describe(request: Request) -> str:
    client = request.client.host if request.client else "-"
    return f"{request.method} {request.url.path} from {client}"


def _log(kind: str, request: Request, status_code: int, detail: Any, exc=None) -> None:
    line = f"[{kind}] {_describe(request)} -> {status_code}: {detail}"
    if status_code < 500:
        logger.warning(line)
        return
    if exc is not None:
        line += "\n" + "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error(line)


def _error_body(code: str, message: str, details: Dict[str, Any] | None = None) -> Dict[str, Any]:
    return {
        "success": False,
        "error": {"code": code, "message": message, "details": details or {}},
    }


def _summarize_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # ctx에 예외 객체가 들어 있을 수 있어 직렬화 가능한 필드만 남김
    return [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": str(error.get("msg", "")),
            "type": str(error.get("type", "")),
        }
        for error in errors
    ]


async def handle_base_api_exception(request: Request, exc: BaseAPIException):
    _log(type(exc).__name__, request, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.detail)


async def handle_http_exception(request: Request, exc: HTTPException):
    _log("HTTPException", request, exc.status_code, exc.detail, exc)
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        content = exc.detail
    else:
        content = _error_body("HTTP_ERROR", str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def handle_validation_error(request: Request, exc: RequestValidationError):
    errors = _summarize_errors(exc.errors())
    _log("ValidationError", request, 400, errors)
    return JSONResponse(
        status_code=400,
        content=_error_body("VALIDATION_001", "Validation failed", {"errors": errors}),
    )


async def handle_integrity_error(request: Request, exc: IntegrityError):
    """
    유니크 제약 위반 (중복 참가 슬롯, 멱등키 재사용 등) 경합을 409로 변환.
    트랜잭션 롤백은 transactional() 에서 이미 끝난 상태.
    """
    conflict = ConflictError("Concurrent update detected, please retry")
    _log("IntegrityError", request, conflict.status_code, exc.orig)
    return JSONResponse(status_code=conflict.status_code, content=conflict.detail)


async def handle_unexpected_error(request: Request, exc: Exception):
    _log(f"Unhandled {type(exc).__name__}", request, 500, exc, exc)
    internal = InternalServerError()
    return JSONResponse(status_code=internal.status_code, content=internal.detail)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BaseAPIException, handle_base_api_exception)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(IntegrityError, handle_integrity_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
