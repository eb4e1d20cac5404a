from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional
from sqlalchemy import and_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session
from app.core.config import settings
from app.models.usage_counter import UsageCounter
from app.models.user import User
import logging

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def user_identity_key(user_id: str) -> str:
    return f"user:{user_id}"


def ip_identity_key(client_ip: str) -> str:
    return f"ip:{client_ip}"


def utc_day(now: datetime) -> date:
    """Calendar day of a naive UTC timestamp."""
    return now.date()


def next_utc_midnight(now: datetime) -> datetime:
    return datetime.combine(utc_day(now) + timedelta(days=1), datetime.min.time())


@dataclass
class QuotaStatus:
    allowed: bool
    remaining: int
    limit: int
    used_today: int
    resets_at: datetime

    def as_dict(self) -> dict:
        return {
            "remaining": self.remaining,
            "limit": self.limit,
            "usedToday": self.used_today,
            "resetsAt": self.resets_at.isoformat() + "Z",
        }


class QuotaService:
    """
    Per-identity daily generation ledger.

    Identities are 'user:<id>' for accounts and 'ip:<address>' for anonymous
    callers; the two namespaces never share a counter. Days are UTC calendar
    days regardless of server timezone.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or datetime.utcnow
        self.logger = logging.getLogger(__name__)

    def limit_for_user(self, user: User) -> int:
        if user.is_admin:
            return settings.admin_generation_limit
        return user.daily_generation_limit

    def anonymous_limit(self) -> int:
        return settings.anonymous_daily_generation_limit

    def get_used(self, db: Session, identity_key: str, usage_date: date) -> int:
        count = db.query(UsageCounter.count).filter(
            and_(
                UsageCounter.identity_key == identity_key,
                UsageCounter.usage_date == usage_date
            )
        ).scalar()
        return count or 0

    def check_limit(self, db: Session, identity_key: str, limit: int) -> QuotaStatus:
        """
        Read-only quota check for today. A limit of 0 always denies.
        Database errors propagate to the caller.
        """
        self.logger.info(f"check_limit: Entry - identity: {identity_key}, limit: {limit}")

        now = self.clock()
        used_today = self.get_used(db, identity_key, utc_day(now))
        remaining = max(0, limit - used_today)
        status = QuotaStatus(
            allowed=remaining > 0,
            remaining=remaining,
            limit=limit,
            used_today=used_today,
            resets_at=next_utc_midnight(now),
        )

        self.logger.info(f"check_limit: Success - identity: {identity_key}, used: {used_today}/{limit}, allowed: {status.allowed}")
        return status

    def record_usage(self, db: Session, identity_key: str) -> None:
        """
        Count one successful generation for today with a single
        INSERT ... ON CONFLICT DO UPDATE SET count = count + 1.
        """
        self.logger.info(f"record_usage: Entry - identity: {identity_key}")

        dialect = db.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)
        if insert is None:
            raise RuntimeError(f"Atomic usage increment is not supported on {dialect}")

        now = self.clock()
        stmt = insert(UsageCounter).values(
            identity_key=identity_key,
            usage_date=utc_day(now),
            count=1,
            last_used_at=now,
        ).on_conflict_do_update(
            index_elements=["identity_key", "usage_date"],
            set_={"count": UsageCounter.count + 1, "last_used_at": now},
        )

        try:
            db.execute(stmt)
            db.commit()
            self.logger.info(f"record_usage: Success - identity: {identity_key}")
        except Exception as e:
            db.rollback()
            self.logger.error(f"record_usage: Failure - {e}")
            raise

    def reset_usage(self, db: Session, identity_key: str, usage_date: Optional[date] = None) -> int:
        """
        Reset an identity's counter to 0.

        Args:
            db: Database session.
            identity_key: 'user:<id>' or 'ip:<address>'.
            usage_date: Target UTC day. Defaults to today.

        Returns:
            int: Number of rows updated.
        """
        self.logger.info(f"reset_usage: Entry - identity: {identity_key}, date: {usage_date}")

        try:
            if not usage_date:
                usage_date = utc_day(self.clock())

            rows_updated = db.query(UsageCounter).filter(
                and_(
                    UsageCounter.identity_key == identity_key,
                    UsageCounter.usage_date == usage_date
                )
            ).update({"count": 0})
            db.commit()

            self.logger.info(f"reset_usage: Success - identity: {identity_key}, rows updated: {rows_updated}")
            return rows_updated
        except Exception as e:
            db.rollback()
            self.logger.error(f"reset_usage: Failure - {e}")
            raise

    def get_daily_history(self, db: Session, identity_key: str, days: int = 7) -> List[dict]:
        """Per-day counts for the last `days` UTC days (oldest first), zero-filled."""
        today = utc_day(self.clock())
        start = today - timedelta(days=days - 1)

        rows = db.query(UsageCounter).filter(
            and_(
                UsageCounter.identity_key == identity_key,
                UsageCounter.usage_date >= start,
                UsageCounter.usage_date <= today
            )
        ).all()
        counts = {row.usage_date: row.count for row in rows}

        return [
            {"date": (start + timedelta(days=i)).isoformat(), "count": counts.get(start + timedelta(days=i), 0)}
            for i in range(days)
        ]
