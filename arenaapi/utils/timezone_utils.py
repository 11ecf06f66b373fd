"""
타임존 유틸리티

저장/비교는 UTC 기준, 사용자 표시용 변환은 인도 표준시(IST) 기준.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional

# 인도 표준시 (IST = UTC+5:30)
IST = timezone(timedelta(hours=5, minutes=30))


def get_utc_now() -> datetime:
    """현재 UTC 시간을 반환합니다."""
    return datetime.now(timezone.utc)


def get_ist_now() -> datetime:
    """현재 IST 시간을 반환합니다."""
    return datetime.now(IST)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """datetime을 UTC aware 값으로 정규화합니다.

    sqlite 등 타임존을 보존하지 않는 백엔드에서 읽은 naive datetime은
    UTC로 가정합니다.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_ist(dt: datetime) -> datetime:
    """UTC 또는 다른 타임존의 datetime을 IST로 변환합니다."""
    return as_utc(dt).astimezone(IST)


def minutes_until(target: datetime, now: Optional[datetime] = None) -> float:
    """now 기준 target까지 남은 시간(분). 이미 지났으면 음수."""
    now = as_utc(now) if now is not None else get_utc_now()
    return (as_utc(target) - now).total_seconds() / 60
