"""Storage for OTP records.

``OtpStore`` is the narrow set of operations the OTP engine needs. The SQL
implementation is used in production; the in-memory one backs tests and
single-process development setups. Which one is used is decided by
configuration in the API dependency layer.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy import and_, delete, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import col, select

from usersvc.errors import RateLimited
from usersvc.models import OtpRecord, OtpStatus
from usersvc.models.otp import CLOSED_STATUSES, OPEN_STATUSES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OtpKey:
    """What an OTP is bound to.

    The phone is always part of the key. Reference fields narrow it to one
    entity; an unscoped key matches every record for the phone.
    """

    phone: str
    reference_type: str | None = None
    reference_id: str | None = None

    @property
    def scoped(self) -> bool:
        return self.reference_type is not None or self.reference_id is not None

    @property
    def scope(self) -> str:
        if not self.scoped:
            return self.phone
        return f"{self.phone}|{self.reference_type or ''}:{self.reference_id or ''}"

    def matches(self, record: OtpRecord) -> bool:
        if record.phone != self.phone:
            return False
        return not self.scoped or record.scope == self.scope

    def new_record(self, hashed_secret: str, issued_at: int, expires_at: int) -> OtpRecord:
        return OtpRecord(
            phone=self.phone,
            reference_type=self.reference_type,
            reference_id=self.reference_id,
            scope=self.scope,
            hashed_secret=hashed_secret,
            issued_at=issued_at,
            expires_at=expires_at,
            attempts=0,
            status=OtpStatus.PENDING.value,
        )


class OtpStore(ABC):
    """Persistence operations used by the OTP engine. Times are epoch ms."""

    @abstractmethod
    async def find_recent_pending(self, key: OtpKey, since_ms: int) -> OtpRecord | None:
        """Newest pending record issued after ``since_ms``."""

    @abstractmethod
    async def find_active_lock(self, key: OtpKey, now_ms: int) -> OtpRecord | None:
        """A locked record whose lockout window still covers ``now_ms``."""

    @abstractmethod
    async def find_latest_open(self, key: OtpKey) -> OtpRecord | None:
        """Newest pending or locked record."""

    @abstractmethod
    async def delete_stale(self, key: OtpKey, now_ms: int) -> int:
        """Delete past-expiry, verified and expired records for the key."""

    @abstractmethod
    async def replace_pending(self, key: OtpKey, record: OtpRecord) -> OtpRecord:
        """Atomically delete pending records for the key and insert ``record``.

        Raises ``RateLimited`` if a concurrent request won the race.
        """

    @abstractmethod
    async def increment_attempts(self, record: OtpRecord) -> int | None:
        """Atomically bump ``attempts`` on a pending record.

        Returns the new count, or None if the record is no longer pending.
        """

    @abstractmethod
    async def save(self, record: OtpRecord) -> None:
        """Persist a status change."""

    @abstractmethod
    async def delete_for_key(self, key: OtpKey) -> int:
        """Delete every record for the key."""

    @abstractmethod
    async def purge(self, now_ms: int, closed_before_ms: int) -> int:
        """Delete expired records and closed records issued before the cutoff."""


class InMemoryOtpStore(OtpStore):
    """Process-local store. Each method runs without awaiting, so it is atomic
    with respect to other coroutines in the same event loop."""

    def __init__(self) -> None:
        self._records: list[OtpRecord] = []

    def _for_key(self, key: OtpKey) -> list[OtpRecord]:
        return [r for r in self._records if key.matches(r)]

    @staticmethod
    def _newest(records: list[OtpRecord]) -> OtpRecord | None:
        return max(records, key=lambda r: r.issued_at, default=None)

    def _remove(self, doomed: list[OtpRecord]) -> int:
        ids = {id(r) for r in doomed}
        self._records = [r for r in self._records if id(r) not in ids]
        return len(ids)

    def _holds(self, record: OtpRecord) -> bool:
        return any(r is record for r in self._records)

    @property
    def records(self) -> list[OtpRecord]:
        return list(self._records)

    def clear(self) -> None:
        self._records.clear()

    async def find_recent_pending(self, key: OtpKey, since_ms: int) -> OtpRecord | None:
        return self._newest(
            [
                r
                for r in self._for_key(key)
                if r.status == OtpStatus.PENDING.value and r.issued_at > since_ms
            ]
        )

    async def find_active_lock(self, key: OtpKey, now_ms: int) -> OtpRecord | None:
        return self._newest(
            [
                r
                for r in self._for_key(key)
                if r.status == OtpStatus.LOCKED.value and r.expires_at >= now_ms
            ]
        )

    async def find_latest_open(self, key: OtpKey) -> OtpRecord | None:
        return self._newest([r for r in self._for_key(key) if r.status in OPEN_STATUSES])

    async def delete_stale(self, key: OtpKey, now_ms: int) -> int:
        return self._remove(
            [
                r
                for r in self._for_key(key)
                if r.expires_at < now_ms or r.status in CLOSED_STATUSES
            ]
        )

    async def replace_pending(self, key: OtpKey, record: OtpRecord) -> OtpRecord:
        self._remove([r for r in self._for_key(key) if r.status == OtpStatus.PENDING.value])
        if any(
            r.scope == record.scope and r.status == OtpStatus.PENDING.value
            for r in self._records
        ):
            raise RateLimited("An OTP request for this phone is already in progress")
        self._records.append(record)
        return record

    async def increment_attempts(self, record: OtpRecord) -> int | None:
        if record.status != OtpStatus.PENDING.value or not self._holds(record):
            return None
        record.attempts += 1
        return record.attempts

    async def save(self, record: OtpRecord) -> None:
        if not self._holds(record):
            self._records.append(record)

    async def delete_for_key(self, key: OtpKey) -> int:
        return self._remove(self._for_key(key))

    async def purge(self, now_ms: int, closed_before_ms: int) -> int:
        return self._remove(
            [
                r
                for r in self._records
                if r.expires_at < now_ms
                or (r.status in CLOSED_STATUSES and r.issued_at < closed_before_ms)
            ]
        )


class SqlOtpStore(OtpStore):
    """Store backed by the ``otps`` table.

    Every mutation commits immediately; the partial unique index on
    ``scope`` for pending rows is what keeps concurrent issuers from both
    succeeding.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _key_clause(key: OtpKey):
        if key.scoped:
            return and_(OtpRecord.phone == key.phone, OtpRecord.scope == key.scope)
        return OtpRecord.phone == key.phone

    async def _first(self, *criteria) -> OtpRecord | None:
        stmt = (
            select(OtpRecord)
            .where(*criteria)
            .order_by(col(OtpRecord.issued_at).desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def find_recent_pending(self, key: OtpKey, since_ms: int) -> OtpRecord | None:
        return await self._first(
            self._key_clause(key),
            OtpRecord.status == OtpStatus.PENDING.value,
            OtpRecord.issued_at > since_ms,
        )

    async def find_active_lock(self, key: OtpKey, now_ms: int) -> OtpRecord | None:
        return await self._first(
            self._key_clause(key),
            OtpRecord.status == OtpStatus.LOCKED.value,
            OtpRecord.expires_at >= now_ms,
        )

    async def find_latest_open(self, key: OtpKey) -> OtpRecord | None:
        return await self._first(
            self._key_clause(key),
            col(OtpRecord.status).in_(OPEN_STATUSES),
        )

    async def delete_stale(self, key: OtpKey, now_ms: int) -> int:
        stmt = delete(OtpRecord).where(
            self._key_clause(key),
            or_(OtpRecord.expires_at < now_ms, col(OtpRecord.status).in_(CLOSED_STATUSES)),
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount or 0

    async def replace_pending(self, key: OtpKey, record: OtpRecord) -> OtpRecord:
        await self.session.execute(
            delete(OtpRecord).where(
                self._key_clause(key),
                OtpRecord.status == OtpStatus.PENDING.value,
            )
        )
        self.session.add(record)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            logger.info(f"Concurrent OTP issue for {key.phone} lost the race")
            raise RateLimited("An OTP request for this phone is already in progress") from e
        return record

    async def increment_attempts(self, record: OtpRecord) -> int | None:
        stmt = (
            update(OtpRecord)
            .where(
                OtpRecord.id == record.id,
                OtpRecord.status == OtpStatus.PENDING.value,
            )
            .values(attempts=OtpRecord.attempts + 1)
            .returning(OtpRecord.attempts)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        attempts = result.scalar_one_or_none()
        await self.session.commit()
        if attempts is not None:
            set_committed_value(record, "attempts", attempts)
        return attempts

    async def save(self, record: OtpRecord) -> None:
        self.session.add(record)
        await self.session.commit()

    async def delete_for_key(self, key: OtpKey) -> int:
        result = await self.session.execute(delete(OtpRecord).where(self._key_clause(key)))
        await self.session.commit()
        return result.rowcount or 0

    async def purge(self, now_ms: int, closed_before_ms: int) -> int:
        stmt = delete(OtpRecord).where(
            or_(
                OtpRecord.expires_at < now_ms,
                and_(
                    col(OtpRecord.status).in_(CLOSED_STATUSES),
                    OtpRecord.issued_at < closed_before_ms,
                ),
            )
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount or 0
