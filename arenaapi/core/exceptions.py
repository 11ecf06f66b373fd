from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class BaseAPIException(HTTPException):
    """API 에러 공통 베이스

    응답 본문은 항상 {"success": false, "error": {code, message, details}}.
    서브클래스는 status_code / error_code / default_message 만 정의한다.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_001"
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(
            status_code=type(self).status_code,
            detail={
                "success": False,
                "error": {
                    "code": self.error_code,
                    "message": self.message,
                    "details": self.details,
                },
            },
        )

    def __str__(self) -> str:
        return self.message


class AuthenticationError(BaseAPIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "AUTH_001"
    default_message = "Authentication failed"


class ForbiddenError(BaseAPIException):
    """소유자/역할 불일치"""

    status_code = status.HTTP_403_FORBIDDEN
    error_code = "AUTH_002"
    default_message = "Access forbidden"


class ValidationError(BaseAPIException):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "VALIDATION_001"
    default_message = "Validation failed"


class BadRequestError(BaseAPIException):
    """도메인 선행조건 실패"""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "BAD_REQUEST_001"
    default_message = "Bad request"


class NotJoinableError(BaseAPIException):
    """참가 불가 (마감, 만석, 취소 등). message 에 사유를 담는다"""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "MATCH_001"
    default_message = "registration closed"


class AlreadyJoinedError(BaseAPIException):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "MATCH_002"
    default_message = "Already joined this match"


class EligibilityError(BaseAPIException):
    """KYC / 정지 / 대기 중 출금 제한"""

    status_code = status.HTTP_403_FORBIDDEN
    error_code = "ELIGIBILITY_001"
    default_message = "Not eligible"


class NotFoundError(BaseAPIException):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND_001"
    default_message = "Resource not found"


class ConflictError(BaseAPIException):
    """동시 갱신 경합에서 밀림. 재시도 가능"""

    status_code = status.HTTP_409_CONFLICT
    error_code = "CONFLICT_001"
    default_message = "Resource conflict"


class InternalServerError(BaseAPIException):
    pass


class InsufficientBalanceError(BaseAPIException):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "BALANCE_001"
    default_message = "Insufficient balance"
