"""
Database Connection and Persistence

Async SQLAlchemy 2.0 engine and session factory, plus the durable
``Persistence`` implementation used in production.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from sqlalchemy import delete, select, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from sparq_safety.config import Settings
from sparq_safety.models.database import (
    AlertRecord,
    AssessmentRecord,
    Base,
    FollowUpRecord,
    HistoryEntry,
    ManualInterventionRecord,
    ResourceAccessRecord,
    SafetyPlanVersion,
)
from sparq_safety.safety.models import (
    AccessMethod,
    CrisisAlert,
    FollowUpAction,
    FollowUpStatus,
    ManualInterventionItem,
    ResourceAccess,
    SafetyAssessment,
    SafetyPlan,
    Severity,
)
from sparq_safety.safety.persistence import Persistence

logger = logging.getLogger(__name__)


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """
    Create the async engine for the configured database.

    In-memory SQLite shares one connection so every session sees the
    same database.
    """
    if settings.database_url.startswith("sqlite") and ":memory:" in settings.database_url:
        return create_async_engine(
            settings.database_url,
            echo=settings.debug,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        poolclass=NullPool,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Transactional session scope.

    Usage:
        async with session_scope(factory) as db:
            result = await db.execute(select(AlertRecord))

    Yields:
        AsyncSession: committed on success, rolled back on exception
    """
    session = session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db(engine: AsyncEngine) -> None:
    """
    Create all database tables.

    WARNING: This is for development only. In production, use Alembic
    migrations to manage schema changes.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """Close all database connections."""
    await engine.dispose()


async def check_db_health(session_factory: Optional[async_sessionmaker[AsyncSession]]) -> bool:
    """
    Check database connectivity for health checks.

    Returns:
        bool: True if database is accessible, False otherwise
    """
    if session_factory is None:
        return False
    try:
        async with session_scope(session_factory) as db:
            await db.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


def _aware(value: datetime) -> datetime:
    """Some drivers (SQLite) hand back naive datetimes; they are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlAlchemyPersistence(Persistence):
    """
    Durable persistence on SQLAlchemy async sessions.

    Each call is its own transaction.

    Usage:
        engine = create_engine_from_settings(settings)
        await init_db(engine)
        persistence = SqlAlchemyPersistence(create_session_factory(engine))
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ==================================
    # Assessments & History
    # ==================================

    async def save_assessment(self, assessment: SafetyAssessment) -> None:
        async with session_scope(self.session_factory) as db:
            await db.merge(
                AssessmentRecord(
                    id=assessment.id,
                    user_id=assessment.user_id,
                    couple_id=assessment.couple_id,
                    severity=assessment.severity.value,
                    requires_review=assessment.requires_review,
                    timestamp=assessment.timestamp,
                    payload=assessment.model_dump(mode="json"),
                )
            )

    async def append_to_history(
        self,
        user_id: str,
        assessment: SafetyAssessment,
        window_size: int,
    ) -> None:
        async with session_scope(self.session_factory) as db:
            db.add(
                HistoryEntry(
                    user_id=user_id,
                    assessment_id=assessment.id,
                    payload=assessment.model_dump(mode="json"),
                )
            )
            await db.flush()

            result = await db.execute(
                select(HistoryEntry.seq)
                .where(HistoryEntry.user_id == user_id)
                .order_by(HistoryEntry.seq.desc())
            )
            stale = list(result.scalars().all())[window_size:]
            if stale:
                await db.execute(delete(HistoryEntry).where(HistoryEntry.seq.in_(stale)))

    async def load_history(self, user_id: str, limit: int) -> list[SafetyAssessment]:
        async with session_scope(self.session_factory) as db:
            result = await db.execute(
                select(HistoryEntry)
                .where(HistoryEntry.user_id == user_id)
                .order_by(HistoryEntry.seq.desc())
                .limit(limit)
            )
            rows = list(result.scalars().all())
        return [SafetyAssessment.model_validate(row.payload) for row in reversed(rows)]

    # ==================================
    # Alerts
    # ==================================

    async def save_alert(self, alert: CrisisAlert) -> None:
        async with session_scope(self.session_factory) as db:
            await db.merge(
                AlertRecord(
                    id=alert.id,
                    user_id=alert.user_id,
                    couple_id=alert.couple_id,
                    severity=alert.severity.value,
                    status=alert.status.value,
                    is_active=alert.is_active,
                    notification_pending=alert.notification_pending,
                    created_at=alert.created_at,
                    updated_at=alert.updated_at,
                    payload=alert.model_dump(mode="json"),
                )
            )

    async def load_alert(self, alert_id: str) -> Optional[CrisisAlert]:
        async with session_scope(self.session_factory) as db:
            row = await db.get(AlertRecord, alert_id)
        return CrisisAlert.model_validate(row.payload) if row else None

    async def list_alerts_for_user(
        self,
        user_id: str,
        active_only: bool = True,
    ) -> list[CrisisAlert]:
        query = select(AlertRecord).where(AlertRecord.user_id == user_id)
        if active_only:
            query = query.where(AlertRecord.is_active.is_(True))
        async with session_scope(self.session_factory) as db:
            result = await db.execute(query)
            rows = list(result.scalars().all())
        alerts = [CrisisAlert.model_validate(row.payload) for row in rows]
        alerts.sort(key=lambda a: a.created_at, reverse=True)
        return alerts

    async def list_active_alerts(self) -> list[CrisisAlert]:
        async with session_scope(self.session_factory) as db:
            result = await db.execute(
                select(AlertRecord).where(AlertRecord.is_active.is_(True))
            )
            rows = list(result.scalars().all())
        return [CrisisAlert.model_validate(row.payload) for row in rows]

    # ==================================
    # Follow-ups
    # ==================================

    async def save_follow_ups(self, alert_id: str, follow_ups: list[FollowUpAction]) -> None:
        async with session_scope(self.session_factory) as db:
            await db.execute(delete(FollowUpRecord).where(FollowUpRecord.alert_id == alert_id))
            for position, follow_up in enumerate(follow_ups):
                db.add(
                    FollowUpRecord(
                        alert_id=alert_id,
                        position=position,
                        scheduled_at=follow_up.scheduled_at,
                        status=follow_up.status.value,
                        payload=follow_up.model_dump(mode="json"),
                    )
                )

    async def load_follow_ups(self, alert_id: str) -> list[FollowUpAction]:
        async with session_scope(self.session_factory) as db:
            result = await db.execute(
                select(FollowUpRecord)
                .where(FollowUpRecord.alert_id == alert_id)
                .order_by(FollowUpRecord.position)
            )
            rows = list(result.scalars().all())
        return [FollowUpAction.model_validate(row.payload) for row in rows]

    async def list_alerts_with_due_follow_ups(self, before: datetime) -> list[str]:
        async with session_scope(self.session_factory) as db:
            result = await db.execute(
                select(FollowUpRecord.alert_id)
                .where(
                    FollowUpRecord.status == FollowUpStatus.SCHEDULED.value,
                    FollowUpRecord.scheduled_at < before,
                )
                .distinct()
            )
            return list(result.scalars().all())

    # ==================================
    # Resource Access Log
    # ==================================

    async def record_resource_access(self, access: ResourceAccess) -> None:
        async with session_scope(self.session_factory) as db:
            db.add(
                ResourceAccessRecord(
                    id=access.id,
                    user_id=access.user_id,
                    resource_id=access.resource_id,
                    access_method=access.access_method.value,
                    alert_id=access.alert_id,
                    accessed_at=access.accessed_at,
                )
            )

    async def list_resource_access(self, user_id: str) -> list[ResourceAccess]:
        async with session_scope(self.session_factory) as db:
            result = await db.execute(
                select(ResourceAccessRecord)
                .where(ResourceAccessRecord.user_id == user_id)
                .order_by(ResourceAccessRecord.accessed_at)
            )
            rows = list(result.scalars().all())
        return [
            ResourceAccess(
                id=row.id,
                user_id=row.user_id,
                resource_id=row.resource_id,
                access_method=AccessMethod(row.access_method),
                alert_id=row.alert_id,
                accessed_at=_aware(row.accessed_at),
            )
            for row in rows
        ]

    # ==================================
    # Safety Plans
    # ==================================

    async def save_safety_plan(self, plan: SafetyPlan) -> None:
        async with session_scope(self.session_factory) as db:
            db.add(
                SafetyPlanVersion(
                    plan_id=plan.id,
                    user_id=plan.user_id,
                    version=plan.version,
                    updated_by=plan.updated_by,
                    last_updated=plan.last_updated,
                    payload=plan.model_dump(mode="json"),
                )
            )

    async def load_safety_plan(self, user_id: str) -> Optional[SafetyPlan]:
        async with session_scope(self.session_factory) as db:
            result = await db.execute(
                select(SafetyPlanVersion)
                .where(SafetyPlanVersion.user_id == user_id)
                .order_by(SafetyPlanVersion.version.desc())
                .limit(1)
            )
            row = result.scalars().first()
        return SafetyPlan.model_validate(row.payload) if row else None

    async def list_safety_plan_versions(self, user_id: str) -> list[SafetyPlan]:
        async with session_scope(self.session_factory) as db:
            result = await db.execute(
                select(SafetyPlanVersion)
                .where(SafetyPlanVersion.user_id == user_id)
                .order_by(SafetyPlanVersion.version)
            )
            rows = list(result.scalars().all())
        return [SafetyPlan.model_validate(row.payload) for row in rows]

    # ==================================
    # Manual Intervention Queue
    # ==================================

    async def enqueue_manual_intervention(self, item: ManualInterventionItem) -> None:
        async with session_scope(self.session_factory) as db:
            db.add(
                ManualInterventionRecord(
                    id=item.id,
                    alert_id=item.alert_id,
                    user_id=item.user_id,
                    severity=item.severity.value,
                    reason=item.reason,
                    attempts=item.attempts,
                    created_at=item.created_at,
                )
            )
        logger.debug(f"Manual intervention persisted for alert={item.alert_id}")

    async def list_manual_interventions(self) -> list[ManualInterventionItem]:
        async with session_scope(self.session_factory) as db:
            result = await db.execute(
                select(ManualInterventionRecord).order_by(ManualInterventionRecord.created_at)
            )
            rows = list(result.scalars().all())
        return [
            ManualInterventionItem(
                id=row.id,
                alert_id=row.alert_id,
                user_id=row.user_id,
                severity=Severity(row.severity),
                reason=row.reason,
                attempts=row.attempts,
                created_at=_aware(row.created_at),
            )
            for row in rows
        ]
