from abc import ABC
from typing import TypeVar, Generic, Optional, List, Dict, Any, Type
from sqlalchemy.orm import Session
from pydantic import BaseModel

T = TypeVar("T")
SchemaType = TypeVar("SchemaType", bound=BaseModel)


class BaseRepository(Generic[T, SchemaType], ABC):
    """리포지토리 베이스 - 항상 Pydantic 스키마를 반환

    flush 까지만 하고 commit 하지 않는다. 트랜잭션 경계는 서비스의
    transactional() 블록이 정한다. 감사 로그처럼 금전 트랜잭션과 분리된
    기록만 commit=True 로 즉시 커밋한다.
    """

    def __init__(
        self, model_class: Type[T], schema_class: Type[SchemaType], db: Session
    ):
        self.model_class = model_class
        self.schema_class = schema_class
        self.db = db

    def _to_schema(self, model_instance: Any) -> Optional[SchemaType]:
        if model_instance is None:
            return None
        return self.schema_class.model_validate(model_instance)

    def _to_schemas(self, model_instances: List[Any]) -> List[SchemaType]:
        return [self._to_schema(instance) for instance in model_instances]

    def _query(self, filters: Optional[Dict[str, Any]] = None):
        # 조건부 UPDATE(core)로 바뀐 값이 세션 캐시에 남지 않도록 항상 DB 값으로 갱신
        query = self.db.query(self.model_class).populate_existing()
        for key, value in (filters or {}).items():
            query = query.filter(getattr(self.model_class, key) == value)
        return query

    def _get_model(self, id: Any) -> Optional[T]:
        return self.db.get(self.model_class, id, populate_existing=True)

    def get_by_id(self, id: Any) -> Optional[SchemaType]:
        return self._to_schema(self._get_model(id))

    def get_by_field(self, field_name: str, value: Any) -> Optional[SchemaType]:
        return self._to_schema(self._query({field_name: value}).first())

    def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        return self._query(filters).count()

    def create(self, commit: bool = False, **kwargs) -> Optional[SchemaType]:
        """레코드 생성 후 flush. DB 기본값을 읽기 위해 refresh"""
        instance = self.model_class(**kwargs)
        self.db.add(instance)
        self.db.flush()
        self.db.refresh(instance)
        if commit:
            self.db.commit()
        return self._to_schema(instance)

    def update(
        self, instance_id: Any, commit: bool = False, **kwargs
    ) -> Optional[SchemaType]:
        """
        ORM 경유 업데이트. 잔액/상태 전이처럼 경합이 있는 변경에는 쓰지 않고
        각 리포지토리의 조건부 UPDATE 메서드를 쓴다.
        """
        instance = self._get_model(instance_id)
        if instance is None:
            return None

        for key, value in kwargs.items():
            setattr(instance, key, value)

        self.db.flush()
        self.db.refresh(instance)
        if commit:
            self.db.commit()
        return self._to_schema(instance)
