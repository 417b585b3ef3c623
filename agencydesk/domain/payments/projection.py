"""
Local projection of a displayed payment list.

Records arrive from list re-fetches and from the change feed, possibly
duplicated or out of order. The projection keeps one record per id, the one
with the latest updatedAt. Optimistic edits are provisional until the store
confirms them, and roll back to the last known-good record otherwise.
"""

import logging
from copy import deepcopy
from datetime import datetime
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


def _updated_at(record: dict) -> datetime:
    value = record.get("updatedAt")
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)
    return value or datetime.min


def _created_key(record: dict):
    value = record.get("createdAt")
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)
    return (value or datetime.min, record.get("id", ""))


def reconcile_records(records: Iterable[dict]) -> list[dict]:
    """De-duplicate by id, keeping the most recently updated copy (ties: last seen)"""
    latest: dict[str, dict] = {}
    for record in records:
        current = latest.get(record["id"])
        if current is None or _updated_at(record) >= _updated_at(current):
            latest[record["id"]] = record
    return list(latest.values())


class PaymentProjection:
    """Id-keyed, last-writer-wins view of payment records (wire format dicts)"""

    def __init__(self, records: Optional[Iterable[dict]] = None):
        self._records: dict[str, dict] = {}
        # id -> last known-good record (None when the row was created optimistically)
        self._confirmed: dict[str, Optional[dict]] = {}
        if records:
            self.merge(records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, payment_id: str) -> bool:
        return payment_id in self._records

    def get(self, payment_id: str) -> Optional[dict]:
        return self._records.get(payment_id)

    def is_provisional(self, payment_id: str) -> bool:
        return payment_id in self._confirmed

    def merge(self, records: Iterable[dict]) -> None:
        """Apply authoritative records from a re-fetch or the change feed"""
        for record in reconcile_records(records):
            payment_id = record["id"]
            current = self._records.get(payment_id)
            if payment_id in self._confirmed:
                # An authoritative read settles any provisional edit
                self._confirmed.pop(payment_id)
            elif current is not None and _updated_at(record) < _updated_at(current):
                logger.debug(f"ℹ️ Ignoring stale copy of payment {payment_id}")
                continue

            if record.get("isDeleted"):
                self._records.pop(payment_id, None)
            else:
                self._records[payment_id] = record

    def apply_optimistic(self, payment_id: str, changes: dict) -> dict:
        """Show a change before the store confirms it"""
        if payment_id not in self._confirmed:
            current = self._records.get(payment_id)
            self._confirmed[payment_id] = deepcopy(current) if current is not None else None
        record = {**self._records.get(payment_id, {"id": payment_id}), **changes}
        if record.get("isDeleted"):
            self._records.pop(payment_id, None)
        else:
            self._records[payment_id] = record
        return record

    def confirm(self, record: dict) -> None:
        """The store accepted the change; its record replaces the provisional one"""
        self._confirmed.pop(record["id"], None)
        if record.get("isDeleted"):
            self._records.pop(record["id"], None)
        else:
            self._records[record["id"]] = record

    def rollback(self, payment_id: str) -> Optional[dict]:
        """The store rejected the change; restore the last known-good record"""
        if payment_id not in self._confirmed:
            return self._records.get(payment_id)
        previous = self._confirmed.pop(payment_id)
        if previous is None:
            self._records.pop(payment_id, None)
        else:
            self._records[payment_id] = previous
        logger.info(f"↩️ Rolled back provisional change to payment {payment_id}")
        return previous

    def items(self) -> list[dict]:
        """Visible records, newest first"""
        return sorted(self._records.values(), key=_created_key, reverse=True)
