import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from site_analyzer.features.analysis.models.audit_result import AuditCategory, AuditResult
from site_analyzer.features.analysis.models.domain_record import DomainRecord
from site_analyzer.features.analysis.schemas.analysis import (
    AuditResultCreate,
    AuditResultRead,
    DomainRecordRead,
)
from site_analyzer.platform.exceptions import PersistenceError
from site_analyzer.platform.logger import get_logger


def _audit_read(row: AuditResult) -> AuditResultRead:
    return AuditResultRead(
        id=row.id,
        domain_record_id=row.domain_record_id,
        url=row.url,
        category=row.category,
        status=row.status,
        score=row.score,
        results=row.results,
        metadata=row.audit_metadata or {},
        created_at=row.created_at,
    )


class SqlAlchemyAnalysisRepository:
    """
    AnalysisRepository backed by async SQLAlchemy.

    Every call opens its own session, so probe units settling concurrently
    never share an AsyncSession.
    """

    def __init__(self, session_factory: async_sessionmaker, logger: Optional[logging.Logger] = None):
        self.session_factory = session_factory
        self.logger = logger or get_logger(__name__)

    @staticmethod
    def _record_query(domain: str, organization_id: Optional[str]):
        query = select(DomainRecord).where(DomainRecord.domain == domain)
        if organization_id is None:
            return query.where(DomainRecord.organization_id.is_(None))
        return query.where(DomainRecord.organization_id == organization_id)

    async def find_domain_record(self, domain: str, organization_id: Optional[str]) -> Optional[DomainRecordRead]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(self._record_query(domain, organization_id))
                record = result.scalars().first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load domain record for {domain}: {e}") from e
        return DomainRecordRead.model_validate(record) if record else None

    async def upsert_domain_record(
        self, domain: str, display_name: str, organization_id: Optional[str]
    ) -> DomainRecordRead:
        """
        Return the record for (organization_id, domain), creating it when
        missing. A concurrent insert that wins the unique constraint is
        re-read instead of failing.
        """
        try:
            async with self.session_factory() as db:
                record = await self._upsert(db, domain, display_name, organization_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to upsert domain record for {domain}: {e}") from e
        return DomainRecordRead.model_validate(record)

    async def _upsert(
        self, db: AsyncSession, domain: str, display_name: str, organization_id: Optional[str]
    ) -> DomainRecord:
        result = await db.execute(self._record_query(domain, organization_id))
        record = result.scalars().first()

        if record:
            if display_name and record.display_name != display_name:
                record.display_name = display_name
                await db.commit()
                await db.refresh(record)
            return record

        record = DomainRecord(domain=domain, display_name=display_name, organization_id=organization_id)
        db.add(record)
        try:
            await db.commit()
            await db.refresh(record)
        except IntegrityError:
            await db.rollback()
            self.logger.info(f"Domain record for {domain} created concurrently, reloading")
            result = await db.execute(self._record_query(domain, organization_id))
            record = result.scalars().first()
            if record is None:
                raise
        return record

    async def mark_analyzed(self, domain_record_id: str, analyzed_at: datetime) -> None:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    update(DomainRecord)
                    .where(DomainRecord.id == domain_record_id)
                    .values(last_analyzed_at=analyzed_at)
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update domain record {domain_record_id}: {e}") from e

        if result.rowcount == 0:
            raise PersistenceError(f"Domain record {domain_record_id} not found")

    async def create_audit_result(self, audit: AuditResultCreate) -> AuditResultRead:
        row = AuditResult(
            domain_record_id=audit.domain_record_id,
            url=audit.url,
            category=audit.category,
            status=audit.status,
            score=audit.score,
            results=audit.results,
            audit_metadata=audit.metadata,
        )
        try:
            async with self.session_factory() as db:
                db.add(row)
                await db.commit()
                await db.refresh(row)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save {audit.category.value} audit result: {e}") from e
        return _audit_read(row)

    async def find_latest_audit_result(
        self, domain_record_id: str, category: AuditCategory
    ) -> Optional[AuditResultRead]:
        query = (
            select(AuditResult)
            .where(AuditResult.domain_record_id == domain_record_id, AuditResult.category == category)
            .order_by(AuditResult.created_at.desc(), AuditResult.id.desc())
            .limit(1)
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(query)
                row = result.scalars().first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load {category.value} audit result: {e}") from e
        return _audit_read(row) if row else None
