from contextlib import asynccontextmanager
from typing import Generic, TypeVar, Optional, List, Type, AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import Select, select, update
from pydantic import BaseModel

from common.core.otel_axiom_exporter import trace_span
from common.db.scoped import get_session

EntityType = TypeVar("EntityType")
DomainModelType = TypeVar("DomainModelType")
CreateModelType = TypeVar("CreateModelType", bound=BaseModel)
UpdateModelType = TypeVar("UpdateModelType", bound=BaseModel)


class BaseRepository(Generic[EntityType, DomainModelType]):
    """
    Maps one SQLAlchemy entity to its pydantic domain model.

    Pass db_session to pin every operation to a caller-owned session (tests
    do this). Without one, each operation borrows a session through
    get_session(), joining the enclosing transaction() if there is one, so
    no connection is held across gateway calls or retry sleeps.
    """

    def __init__(
        self,
        entity_class: Type[EntityType],
        domain_class: Type[DomainModelType],
        db_session: Optional[AsyncSession] = None,
    ):
        self.entity_class = entity_class
        self.domain_class = domain_class
        self._explicit_session = db_session

    @asynccontextmanager
    async def _get_session(self) -> AsyncGenerator[AsyncSession, None]:
        if self._explicit_session is not None:
            yield self._explicit_session
        else:
            async with get_session() as session:
                yield session

    def _entity_to_domain(self, entity: EntityType) -> DomainModelType:
        return self.domain_class.model_validate(entity)

    def _entities_to_domain(self, entities: List[EntityType]) -> List[DomainModelType]:
        return [self._entity_to_domain(entity) for entity in entities]

    async def _fetch_one(self, statement: Select) -> Optional[DomainModelType]:
        """First row of statement as a domain model, or None."""
        async with self._get_session() as session:
            result = await session.execute(statement)
            entity = result.scalars().first()
            return self._entity_to_domain(entity) if entity else None

    async def _fetch_all(self, statement: Select) -> List[DomainModelType]:
        async with self._get_session() as session:
            result = await session.execute(statement)
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def get(self, id: int) -> Optional[DomainModelType]:
        return await self._fetch_one(
            select(self.entity_class).where(self.entity_class.id == id)
        )

    @trace_span
    async def get_by_ids(self, ids: List[int]) -> List[DomainModelType]:
        """Rows for ids in id order; unknown ids are skipped."""
        if not ids:
            return []
        return await self._fetch_all(
            select(self.entity_class)
            .where(self.entity_class.id.in_(ids))
            .order_by(self.entity_class.id)
        )

    @trace_span
    async def create(self, create_model: CreateModelType) -> DomainModelType:
        entity = self.entity_class(**create_model.model_dump(exclude_none=True))
        async with self._get_session() as session:
            session.add(entity)
            await session.flush()
            await session.refresh(entity)
            return self._entity_to_domain(entity)

    @trace_span
    async def update(
        self, id: int, update_model: UpdateModelType
    ) -> Optional[DomainModelType]:
        """Apply only the fields set on update_model; returns the fresh row."""
        values = update_model.model_dump(exclude_unset=True)
        if values:
            async with self._get_session() as session:
                await session.execute(
                    update(self.entity_class)
                    .where(self.entity_class.id == id)
                    .values(values)
                )
                await session.flush()
        return await self.get(id)
