"""
매치/참가자 리포지토리

filled_slots와 status는 조건부 UPDATE로만 변경한다. 동시에 들어온 요청 중
조건을 만족한 하나만 rowcount == 1을 받는다.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy import delete, desc, select, update
from sqlalchemy.orm import Session, selectinload

from arenaapi.models.match import (
    Match as MatchModel,
    MatchParticipant as MatchParticipantModel,
    MatchStatusEnum,
)
from arenaapi.repositories.base import BaseRepository
from arenaapi.schemas.match import (
    Match as MatchSchema,
    MatchDetail,
    MatchParticipant as MatchParticipantSchema,
)


class MatchRepository(BaseRepository[MatchModel, MatchSchema]):
    def __init__(self, db: Session):
        super().__init__(MatchModel, MatchSchema, db)

    def get_detail(self, match_id: int) -> Optional[MatchDetail]:
        """참가자 목록 포함 조회"""
        model_instance = (
            self._query()
            .options(selectinload(self.model_class.participants))
            .filter(self.model_class.id == match_id)
            .first()
        )
        if model_instance is None:
            return None
        return MatchDetail.model_validate(model_instance)

    def get_room_credentials(self, match_id: int) -> Optional[Tuple[str, str, bool]]:
        row = self.db.execute(
            select(
                self.model_class.room_id,
                self.model_class.room_password,
                self.model_class.room_credentials_visible,
            ).where(self.model_class.id == match_id)
        ).first()
        return tuple(row) if row else None

    def list_matches(
        self,
        status: Optional[MatchStatusEnum] = None,
        game_type: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[MatchSchema], int]:
        query = self._query()
        if status is not None:
            query = query.filter(self.model_class.status == status)
        if game_type:
            query = query.filter(self.model_class.game_type == game_type)

        total_count = query.count()
        matches = (
            query.order_by(self.model_class.scheduled_at, self.model_class.id)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return self._to_schemas(matches), total_count

    def find_due_for_registration(self, threshold: datetime) -> List[MatchSchema]:
        """scheduled_at <= threshold 인 upcoming 매치"""
        matches = (
            self._query()
            .filter(
                self.model_class.status == MatchStatusEnum.UPCOMING,
                self.model_class.scheduled_at <= threshold,
            )
            .order_by(self.model_class.scheduled_at)
            .all()
        )
        return self._to_schemas(matches)

    def try_reserve_slot(
        self, match_id: int, joinable_statuses: Iterable[MatchStatusEnum]
    ) -> bool:
        """status가 참가 가능하고 빈 슬롯이 있을 때만 filled_slots + 1"""
        result = self.db.execute(
            update(self.model_class)
            .where(
                self.model_class.id == match_id,
                self.model_class.status.in_(list(joinable_statuses)),
                self.model_class.filled_slots < self.model_class.max_slots,
            )
            .values(filled_slots=self.model_class.filled_slots + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def try_release_slot(
        self, match_id: int, allowed_statuses: Iterable[MatchStatusEnum]
    ) -> bool:
        result = self.db.execute(
            update(self.model_class)
            .where(
                self.model_class.id == match_id,
                self.model_class.status.in_(list(allowed_statuses)),
                self.model_class.filled_slots > 0,
            )
            .values(filled_slots=self.model_class.filled_slots - 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def transition_status(
        self,
        match_id: int,
        from_statuses: Iterable[MatchStatusEnum],
        to_status: MatchStatusEnum,
        **values,
    ) -> bool:
        """현재 status가 from_statuses 중 하나일 때만 전이 (compare-and-set)."""
        result = self.db.execute(
            update(self.model_class)
            .where(
                self.model_class.id == match_id,
                self.model_class.status.in_(list(from_statuses)),
            )
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def update_fields(self, match_id: int, **values) -> bool:
        result = self.db.execute(
            update(self.model_class)
            .where(self.model_class.id == match_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def delete_if_empty(self, match_id: int) -> bool:
        """참가자가 없을 때만 삭제 (조건부 DELETE)"""
        has_participants = self.db.execute(
            select(MatchParticipantModel.id)
            .where(MatchParticipantModel.match_id == match_id)
            .limit(1)
        ).first()
        if has_participants:
            return False

        result = self.db.execute(
            delete(self.model_class)
            .where(
                self.model_class.id == match_id,
                self.model_class.filled_slots == 0,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class MatchParticipantRepository(
    BaseRepository[MatchParticipantModel, MatchParticipantSchema]
):
    def __init__(self, db: Session):
        super().__init__(MatchParticipantModel, MatchParticipantSchema, db)

    def get_participant(
        self, match_id: int, user_id: int
    ) -> Optional[MatchParticipantSchema]:
        model_instance = (
            self._query()
            .filter(
                self.model_class.match_id == match_id,
                self.model_class.user_id == user_id,
            )
            .first()
        )
        return self._to_schema(model_instance)

    def list_for_match(self, match_id: int) -> List[MatchParticipantSchema]:
        participants = (
            self._query()
            .filter(self.model_class.match_id == match_id)
            .order_by(self.model_class.slot_number)
            .all()
        )
        return self._to_schemas(participants)

    def list_for_user(
        self, user_id: int, limit: int = 20, offset: int = 0
    ) -> List[MatchParticipantSchema]:
        participants = (
            self._query()
            .filter(self.model_class.user_id == user_id)
            .order_by(desc(self.model_class.joined_at))
            .offset(offset)
            .limit(limit)
            .all()
        )
        return self._to_schemas(participants)

    def used_slot_numbers(self, match_id: int) -> Set[int]:
        rows = self.db.execute(
            select(self.model_class.slot_number).where(
                self.model_class.match_id == match_id
            )
        ).all()
        return {row[0] for row in rows}

    def remove(self, match_id: int, user_id: int) -> bool:
        result = self.db.execute(
            delete(self.model_class)
            .where(
                self.model_class.match_id == match_id,
                self.model_class.user_id == user_id,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def mark_refunded(self, participant_id: int) -> bool:
        """아직 환불되지 않은 참가자만 refunded=True (중복 환불 방지)"""
        result = self.db.execute(
            update(self.model_class)
            .where(
                self.model_class.id == participant_id,
                self.model_class.refunded.is_(False),
            )
            .values(refunded=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def record_result(
        self, participant_id: int, position: Optional[int], kills: int, prize_won
    ) -> bool:
        """결과 기록 + 상금 지급 표시 (이미 지급된 참가자는 건너뜀)"""
        result = self.db.execute(
            update(self.model_class)
            .where(
                self.model_class.id == participant_id,
                self.model_class.prize_distributed.is_(False),
            )
            .values(
                position=position,
                kills=kills,
                prize_won=prize_won,
                prize_distributed=True,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
