"""TLA persistence with optimistic concurrency.

Every mutation goes through ``update_if``: read the current record, check
the caller's expected version, compute the new record, then write it back
with ``UPDATE ... WHERE id = :id AND version = :expected``. A stale version
(either at read time or at write time) raises ``VersionConflict``; nothing
is merged and nothing is retried here.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from xtrafleet.domain.errors import NotFound, VersionConflict
from xtrafleet.domain.models import TripLeaseAgreement
from xtrafleet.domain.records import TLARecord

logger = logging.getLogger(__name__)

# Record fields kept in JSON columns, keyed by column name
_JSON_FIELDS = {
    "lessor": "lessor",
    "lessee": "lessee",
    "driver_snapshot": "driver",
    "trip": "trip",
    "payment": "payment",
    "insurance": "insurance",
    "lessor_signature": "lessor_signature",
    "lessee_signature": "lessee_signature",
    "trip_tracking": "trip_tracking",
}

_TIMESTAMP_FIELDS = ("created_at", "updated_at", "signed_at", "voided_at")


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _to_aware_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def record_from_row(row: TripLeaseAgreement) -> TLARecord:
    data = {
        "id": row.id,
        "match_id": row.match_id,
        "version": row.version,
        "status": row.status,
        "voided_by": row.voided_by,
        "voided_reason": row.voided_reason,
    }
    for column, field_name in _JSON_FIELDS.items():
        data[field_name] = getattr(row, column)
    for field_name in _TIMESTAMP_FIELDS:
        data[field_name] = _to_aware_utc(getattr(row, field_name))
    return TLARecord.model_validate(data)


def row_values(record: TLARecord) -> dict:
    """Column values for a record; nested snapshots are dumped to JSON-safe dicts."""
    dumped = record.model_dump(mode="json")
    values = {
        "match_id": record.match_id,
        "version": record.version,
        "status": record.status.value,
        "lessor_fleet_id": record.lessor.fleet_id,
        "lessee_fleet_id": record.lessee.fleet_id,
        "driver_id": record.driver.id,
        "voided_by": record.voided_by,
        "voided_reason": record.voided_reason,
    }
    for column, field_name in _JSON_FIELDS.items():
        values[column] = dumped[field_name]
    for field_name in _TIMESTAMP_FIELDS:
        values[field_name] = _to_naive_utc(getattr(record, field_name))
    return values


class TLARepository:
    """Reads and version-guarded writes of TLA records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, record: TLARecord) -> TLARecord:
        row = TripLeaseAgreement(id=record.id, **row_values(record))
        self.db.add(row)
        await self.db.commit()
        logger.info("Created TLA %s (%s)", record.id, record.status.value)
        return record

    async def get(self, tla_id: str) -> TLARecord:
        result = await self.db.execute(
            select(TripLeaseAgreement)
            .where(TripLeaseAgreement.id == tla_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFound(f"Trip lease agreement {tla_id} not found")
        return record_from_row(row)

    async def list_for_fleet(self, fleet_id: str, status: Optional[str] = None) -> list[TLARecord]:
        stmt = select(TripLeaseAgreement).where(
            or_(
                TripLeaseAgreement.lessor_fleet_id == fleet_id,
                TripLeaseAgreement.lessee_fleet_id == fleet_id,
            )
        )
        if status:
            stmt = stmt.where(TripLeaseAgreement.status == status)
        result = await self.db.execute(
            stmt.order_by(TripLeaseAgreement.created_at.desc()).execution_options(populate_existing=True)
        )
        return [record_from_row(row) for row in result.scalars().all()]

    async def list_for_driver(self, driver_id: str) -> list[TLARecord]:
        result = await self.db.execute(
            select(TripLeaseAgreement)
            .where(TripLeaseAgreement.driver_id == driver_id)
            .order_by(TripLeaseAgreement.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return [record_from_row(row) for row in result.scalars().all()]

    async def update_if(
        self,
        tla_id: str,
        expected_version: int,
        mutator: Callable[[TLARecord], TLARecord],
    ) -> TLARecord:
        """Apply ``mutator`` to the current record and persist it under a version guard.

        Raises NotFound, VersionConflict, or whatever the mutator raises
        (in which case nothing is written).
        """
        current = await self.get(tla_id)
        if current.version != expected_version:
            raise VersionConflict("TLA", tla_id, expected_version)

        new_record = mutator(current)
        if new_record.version != expected_version + 1:
            new_record = new_record.model_copy(update={"version": expected_version + 1})

        result = await self.db.execute(
            update(TripLeaseAgreement)
            .where(
                TripLeaseAgreement.id == tla_id,
                TripLeaseAgreement.version == expected_version,
            )
            .values(**row_values(new_record))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            logger.warning("TLA %s write lost the race at version %d", tla_id, expected_version)
            raise VersionConflict("TLA", tla_id, expected_version)

        await self.db.commit()
        return new_record
