from pydantic import BaseModel, Field
from typing import Optional


class PaginationParams(BaseModel):
    """기본 페이지네이션 파라미터"""
    limit: Optional[int] = Field(None, ge=1, description="페이지당 항목 수")
    offset: Optional[int] = Field(0, ge=0, description="시작 오프셋")


# 엔드포인트별 페이지네이션 제한
class PaginationLimits:
    WALLET_HISTORY = {"min": 1, "max": 100, "default": 50}
    MATCH_LIST = {"min": 1, "max": 100, "default": 20}
    WITHDRAWAL_LIST = {"min": 1, "max": 100, "default": 20}
    WITHDRAWAL_QUEUE = {"min": 1, "max": 200, "default": 50}
