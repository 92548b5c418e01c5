"""Interval validation and per-host conflict detection."""

from __future__ import annotations

import datetime as dt
from typing import Optional

from frontdesk.core.errors import InvalidInterval
from frontdesk.core.models import ConflictResult, as_utc
from frontdesk.data.record_store import RecordStore


def validate_interval(start: dt.datetime, end: dt.datetime) -> None:
    if end <= start:
        raise InvalidInterval(start, end)


class ConflictChecker:
    """Finds an existing booking of the host overlapping ``[start, end)``.

    Touching endpoints do not overlap. The check is read-only; callers that
    commit afterwards must hold the host's lock for the result to stay valid.
    """

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def check(
        self,
        host_id: str,
        start: dt.datetime,
        end: dt.datetime,
        exclude_id: Optional[str] = None,
    ) -> ConflictResult:
        start, end = as_utc(start), as_utc(end)
        validate_interval(start, end)
        overlapping = await self._store.find_overlapping(host_id, start, end, exclude_id=exclude_id)
        if overlapping:
            return ConflictResult(conflicting_id=overlapping[0].id)
        return ConflictResult()
