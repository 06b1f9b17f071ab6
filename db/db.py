"""
Async DB helpers for the quiz-reminder backend.
Uses SQLAlchemy 2.0 (aiosqlite by default, asyncpg for Postgres) – no raw SQL
strings in app code.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, AsyncGenerator, Awaitable, Optional, TypeVar

from pydantic import ValidationError
from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint,
    func, select, update
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import NullPool
from sqlalchemy.ext.asyncio import (
    create_async_engine, async_sessionmaker, AsyncSession
)

from app.types.schedule_contract import (
    CourseView, DeliveryKind, DeliveryRecord, DeliveryStatus, RecurringSlot
)
from app.utils.clock import campus_week_bounds
from config import settings

T = TypeVar("T")

_LOGGER = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored here is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ──────────────────────────────────────────────────────────────────────
# 1. Declarative metadata
# ──────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass

# ──────────────────────────────────────────────────────────────────────
# 2. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        path = os.path.abspath(settings.DATABASE_PATH)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        return f"sqlite+aiosqlite:///{path}"
    if url.startswith("sqlite") and "+aiosqlite" not in url:
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if url.startswith("postgres") and "+asyncpg" not in url:
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url

def get_engine():
    global _engine
    if _engine is None:
        url = _build_url()
        if url.startswith("sqlite"):
            _engine = create_async_engine(url, poolclass=NullPool)
        else:
            _engine = create_async_engine(url, pool_size=5, max_overflow=5)
    return _engine

def get_session() -> AsyncGenerator[AsyncSession, None]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    async def _session_scope():
        async with _session_maker() as session:
            yield session
    return _session_scope()

# ──────────────────────────────────────────────────────────────────────
# 3. ORM models
# ──────────────────────────────────────────────────────────────────────

class User(Base):
    __tablename__ = "users"

    id:         Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email:      Mapped[str] = mapped_column(String, unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Course(Base):
    __tablename__ = "courses"

    id:            Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id:       Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    name:          Mapped[str] = mapped_column(String, default="")
    day:           Mapped[str]
    start_time:    Mapped[str]
    end_time:      Mapped[str]
    quiz_reminder: Mapped[bool] = mapped_column(Boolean, default=False)


class EmailLog(Base):
    __tablename__ = "email_logs"
    __table_args__ = (
        # One claim per reminder occurrence; failed claims clear window_start.
        UniqueConstraint("course_id", "window_start", name="uq_email_logs_course_window"),
    )

    id:           Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id:      Mapped[int | None] = mapped_column(ForeignKey("users.id"), index=True)
    course_id:    Mapped[int | None] = mapped_column(Integer, index=True)
    course_name:  Mapped[str] = mapped_column(String, nullable=False)
    kind:         Mapped[str] = mapped_column(String, default="reminder")
    sent_at:      Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    status:       Mapped[str] = mapped_column(String, default="sent")
    window_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_error:   Mapped[str | None] = mapped_column(Text)


# ──────────────────────────────────────────────────────────────────────
# 4. DDL helper (tests and local dev; Alembic in deployments)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ──────────────────────────────────────────────────────────────────────
# 5. Collaborator writes (users / courses)
# ──────────────────────────────────────────────────────────────────────

async def insert_user(email: str) -> int:
    user = User(email=email.strip().lower(), created_at=utcnow())
    async for s in get_session():
        s.add(user)
        await s.commit()
    return user.id


async def insert_course(
    user_id: int,
    day: str,
    start_time: str,
    end_time: str,
    name: str = "",
    quiz_reminder: bool = False,
) -> int:
    course = Course(
        user_id=user_id,
        name=(name or "").strip(),
        day=str(day),
        start_time=start_time,
        end_time=end_time,
        quiz_reminder=bool(quiz_reminder),
    )
    async for s in get_session():
        s.add(course)
        await s.commit()
    return course.id


async def get_user(user_id: int) -> Optional[dict]:
    async for s in get_session():
        user = await s.get(User, user_id)
        return {"id": user.id, "email": user.email} if user else None


# ──────────────────────────────────────────────────────────────────────
# 6. Slot source
# ──────────────────────────────────────────────────────────────────────

async def fetch_reminder_slots() -> list[RecurringSlot]:
    """All reminder-enabled courses joined with their owner's e-mail."""
    async for s in get_session():
        stmt = (
            select(Course, User.email)
            .join(User, Course.user_id == User.id)
            .where(Course.quiz_reminder.is_(True))
            .order_by(Course.id)
        )
        res = await s.execute(stmt)
        slots: list[RecurringSlot] = []
        for course, email in res.all():
            try:
                slots.append(
                    RecurringSlot(
                        id=course.id,
                        owner_id=course.user_id,
                        owner_email=email,
                        display_name=course.name,
                        weekday=course.day,
                        start_minute_of_day=course.start_time,
                        reminder_enabled=course.quiz_reminder,
                    )
                )
            except ValidationError as exc:
                _LOGGER.warning("Skipping course %s with bad schedule: %s", course.id, exc)
        return slots


# ──────────────────────────────────────────────────────────────────────
# 7. Delivery ledger
# ──────────────────────────────────────────────────────────────────────

async def has_recent_send(
    course_id: int, lookback_minutes: int, now: datetime | None = None
) -> bool:
    since = as_utc(now or utcnow()) - timedelta(minutes=lookback_minutes)
    async for s in get_session():
        stmt = (
            select(EmailLog.id)
            .where(
                EmailLog.course_id == course_id,
                EmailLog.status == "sent",
                EmailLog.sent_at >= since,
            )
            .limit(1)
        )
        res = await s.execute(stmt)
        return res.scalar_one_or_none() is not None


async def claim_delivery(
    user_id: int,
    course_id: int,
    label: str,
    window_start: datetime,
    now: datetime | None = None,
) -> int | None:
    """Insert a pending record for this reminder occurrence.

    Returns the new log id, or ``None`` if another sweep already claimed the
    same (course, window_start).
    """
    log = EmailLog(
        user_id=user_id,
        course_id=course_id,
        course_name=label,
        kind="reminder",
        sent_at=as_utc(now or utcnow()),
        status="pending",
        window_start=as_utc(window_start),
    )
    async for s in get_session():
        s.add(log)
        try:
            await s.commit()
        except IntegrityError:
            await s.rollback()
            return None
    return log.id


async def mark_delivery_sent(log_id: int, now: datetime | None = None):
    async for s in get_session():
        await s.execute(
            update(EmailLog)
            .where(EmailLog.id == log_id)
            .values(status="sent", sent_at=as_utc(now or utcnow()), last_error=None)
        )
        await s.commit()


async def mark_delivery_failed(log_id: int, err: str):
    # Clearing window_start lets a later sweep claim the same occurrence again.
    async for s in get_session():
        await s.execute(
            update(EmailLog)
            .where(EmailLog.id == log_id)
            .values(status="failed", last_error=err[:1000], window_start=None)
        )
        await s.commit()


async def record_delivery(
    user_id: int | None,
    course_id: int | None,
    label: str,
    status: DeliveryStatus = "sent",
    kind: DeliveryKind = "reminder",
    now: datetime | None = None,
) -> int:
    log = EmailLog(
        user_id=user_id,
        course_id=course_id,
        course_name=label,
        kind=kind,
        sent_at=as_utc(now or utcnow()),
        status=status,
    )
    async for s in get_session():
        s.add(log)
        await s.commit()
    return log.id


async def latest_delivery(user_id: int, kind: DeliveryKind) -> Optional[DeliveryRecord]:
    async for s in get_session():
        stmt = (
            select(EmailLog)
            .where(EmailLog.user_id == user_id, EmailLog.kind == kind)
            .order_by(EmailLog.sent_at.desc(), EmailLog.id.desc())
            .limit(1)
        )
        res = await s.execute(stmt)
        log = res.scalar_one_or_none()
        return _to_record(log) if log else None


def _to_record(log: EmailLog) -> DeliveryRecord:
    record = DeliveryRecord.model_validate(log)
    record.sent_at = as_utc(record.sent_at)
    return record


# ──────────────────────────────────────────────────────────────────────
# 8. Read surfaces for the collaborator (records view, admin)
# ──────────────────────────────────────────────────────────────────────

async def search_email_logs(
    user_id: int,
    course_name: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
) -> list[DeliveryRecord]:
    async for s in get_session():
        stmt = select(EmailLog).where(EmailLog.user_id == user_id)

        if course_name and course_name.strip():
            stmt = stmt.where(EmailLog.course_name.ilike(f"%{course_name.strip()}%"))
        if from_date:
            stmt = stmt.where(
                EmailLog.sent_at >= datetime.combine(from_date, time.min, tzinfo=timezone.utc)
            )
        if to_date:
            stmt = stmt.where(
                EmailLog.sent_at
                < datetime.combine(to_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
            )

        stmt = stmt.order_by(EmailLog.sent_at.desc(), EmailLog.id.desc())

        res = await s.execute(stmt)
        return [_to_record(log) for log in res.scalars()]


async def list_courses_with_reminder_state(
    user_id: int, now: datetime | None = None
) -> list[CourseView]:
    week_start, week_end = campus_week_bounds(now)
    async for s in get_session():
        courses = (
            await s.execute(select(Course).where(Course.user_id == user_id).order_by(Course.id))
        ).scalars().all()
        reminded = set(
            (
                await s.execute(
                    select(EmailLog.course_id).where(
                        EmailLog.user_id == user_id,
                        EmailLog.kind == "reminder",
                        EmailLog.status == "sent",
                        EmailLog.sent_at >= week_start,
                        EmailLog.sent_at < week_end,
                    )
                )
            ).scalars()
        )
        return [
            CourseView(
                id=c.id,
                user_id=c.user_id,
                name=c.name,
                day=c.day,
                start_time=c.start_time,
                end_time=c.end_time,
                quiz_reminder=c.quiz_reminder,
                reminded_this_week=c.quiz_reminder and c.id in reminded,
            )
            for c in courses
        ]


async def list_users() -> list[dict[str, Any]]:
    course_count = (
        select(func.count(Course.id)).where(Course.user_id == User.id).scalar_subquery()
    )
    async for s in get_session():
        res = await s.execute(
            select(User, course_count.label("course_count")).order_by(User.created_at.desc())
        )
        return [
            {
                "id": u.id,
                "email": u.email,
                "created_at": as_utc(u.created_at),
                "course_count": count,
            }
            for u, count in res.all()
        ]


async def email_stats() -> dict[str, Any]:
    async for s in get_session():
        total = (await s.execute(select(func.count(EmailLog.id)))).scalar_one()
        res = await s.execute(
            select(User.id, User.email, func.count(EmailLog.id).label("email_count"))
            .outerjoin(EmailLog, EmailLog.user_id == User.id)
            .group_by(User.id, User.email)
            .order_by(func.count(EmailLog.id).desc())
        )
        return {
            "total_count": total,
            "by_user": [
                {"user_id": uid, "email": email, "email_count": count}
                for uid, email, count in res.all()
            ],
        }


# ──────────────────────────────────────────────────────────────────────
# 9. Lifecycle
# ──────────────────────────────────────────────────────────────────────

async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
    _session_maker = None


def run_sync(coro: Awaitable[T]) -> T:
    """Run *coro* from synchronous code (Celery tasks, scripts).

    The engine is disposed before the loop closes so no pooled connection
    outlives the event loop it was opened on.
    """
    async def _runner():
        try:
            return await coro
        finally:
            await dispose_engine()
    return asyncio.run(_runner())
