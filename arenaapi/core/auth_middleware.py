from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from arenaapi.models.user import UserRole
from arenaapi.database.session import get_db
from arenaapi.repositories.user_repository import UserRepository
from arenaapi.schemas.user import User as UserSchema
from arenaapi.core.exceptions import AuthenticationError, ForbiddenError
from arenaapi.core.security import decode_access_token

# JWT Bearer 토큰 스킴
security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> UserSchema:
    """필수 사용자 인증 - 유효한 토큰이 필요함"""
    if not credentials:
        raise AuthenticationError("Authentication required")

    payload = decode_access_token(credentials.credentials)
    user = UserRepository(db).get_by_id(payload.user_id)
    if not user:
        raise AuthenticationError("User not found for token")
    return user


def get_current_active_user(
    current_user: UserSchema = Depends(get_current_user),
) -> UserSchema:
    """활성 사용자만 허용 (정지 여부는 참가/출금 서비스에서 판단)"""
    if not current_user.is_active:
        raise ForbiddenError("Inactive user account")
    return current_user


def require_admin(
    current_user: UserSchema = Depends(get_current_active_user),
) -> UserSchema:
    """관리자 권한이 필요한 엔드포인트용 의존성"""
    if not current_user.is_admin:
        raise ForbiddenError("Admin access required")
    return current_user


def require_role(required_role: UserRole):
    """특정 역할 이상의 권한이 필요한 엔드포인트용 의존성 팩토리"""

    def _require_role(
        current_user: UserSchema = Depends(get_current_active_user),
    ) -> UserSchema:
        if not UserRole.has_permission(current_user.role, required_role):
            raise ForbiddenError(f"Role '{required_role.value}' or higher required")
        return current_user

    return _require_role


require_finance = require_role(UserRole.FINANCE)
