"""Append-only local view of live events keyed by store id."""

from __future__ import annotations

import datetime as dt
import enum
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from frontdesk.core.models import Message, Notification


Record = Union[Message, Notification]

PENDING_PREFIX = "local-"


class EntryKind(str, enum.Enum):
    MESSAGE = "message"
    NOTIFICATION = "notification"


@dataclass
class ViewEntry:
    key: str
    kind: EntryKind
    record: Record
    pending: bool = False


class LiveView:
    """Merged, de-duplicated list of messages and notifications for one actor.

    Entries are keyed by the store-assigned id. A message sent locally is shown
    immediately under a temporary ``local-*`` key and is re-keyed to the stored
    id once the write is confirmed; whichever of the confirmation and the change
    feed delivery comes second is dropped.
    """

    def __init__(self) -> None:
        self._entries: List[ViewEntry] = []
        self._index: Dict[str, ViewEntry] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[ViewEntry]:
        return self._index.get(key)

    def add(self, record: Record) -> bool:
        """Append a stored record; returns False when its id is already present."""
        if record.id in self._index:
            return False
        kind = EntryKind.MESSAGE if isinstance(record, Message) else EntryKind.NOTIFICATION
        entry = ViewEntry(key=record.id, kind=kind, record=record)
        self._entries.append(entry)
        self._index[entry.key] = entry
        return True

    def add_pending(self, message: Message) -> str:
        key = f"{PENDING_PREFIX}{uuid.uuid4()}"
        entry = ViewEntry(key=key, kind=EntryKind.MESSAGE, record=message, pending=True)
        self._entries.append(entry)
        self._index[key] = entry
        return key

    def confirm(self, pending_key: str, stored: Message) -> bool:
        """Swap a pending entry for the stored message.

        Returns True if the stored message became visible through this call.
        """
        entry = self._index.pop(pending_key, None)
        if stored.id in self._index:
            if entry is not None:
                self._entries.remove(entry)
            return False
        if entry is None:
            return self.add(stored)
        entry.key = stored.id
        entry.record = stored
        entry.pending = False
        self._index[stored.id] = entry
        return True

    def discard(self, pending_key: str) -> None:
        entry = self._index.pop(pending_key, None)
        if entry is not None:
            self._entries.remove(entry)

    def replace(self, record: Record) -> bool:
        """Refresh the stored copy of a record already in the view (e.g. marked read)."""
        entry = self._index.get(record.id)
        if entry is None:
            return False
        entry.record = record
        return True

    def entries(self) -> List[ViewEntry]:
        """All entries in arrival order."""
        return list(self._entries)

    def notifications(self) -> List[Notification]:
        return [e.record for e in self._entries if e.kind is EntryKind.NOTIFICATION]  # type: ignore[misc]

    def conversation(self, actor_id: str, contact_id: str) -> List[Message]:
        """Messages exchanged between two actors, ordered by ``created_at``."""
        pair = frozenset((actor_id, contact_id))
        messages = [
            e.record
            for e in self._entries
            if e.kind is EntryKind.MESSAGE and e.record.participants() == pair  # type: ignore[union-attr]
        ]
        return sorted(messages, key=lambda m: m.created_at)  # type: ignore[union-attr]

    def latest_created_at(self) -> Optional[dt.datetime]:
        confirmed = [e.record.created_at for e in self._entries if not e.pending]
        return max(confirmed) if confirmed else None
