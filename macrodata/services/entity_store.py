"""
Entity Store: durable state documents and the append-only journal.

This is the source of truth. The vector mirror is derived from it and is never
consulted for reads here.
"""

import uuid
from typing import List, Optional

from sqlalchemy import select

from ..models.core import STATE_TYPES, JournalEntry, StateDocument, state_id
from ..models.tables import JournalRow, StateRow
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import epoch_millis, to_iso
from .database import MemoryDatabase

logger = get_logger(__name__)


def _check_state_type(state_type: str) -> None:
    if state_type not in STATE_TYPES:
        raise ValueError(f"Invalid state type '{state_type}', expected one of: {', '.join(STATE_TYPES)}")


class EntityStore:
    """Keyed state documents plus an immutable journal, one database per owner."""

    def __init__(self, database: MemoryDatabase):
        self.db = database

    # ==================== STATE DOCUMENTS ====================

    def get(self, state_type: str, name: str) -> Optional[StateDocument]:
        """Get a state document by type and name, or None."""
        _check_state_type(state_type)
        with self.db.session() as session:
            row = session.get(StateRow, state_id(state_type, name))
            return self._row_to_state(row) if row else None

    def get_all_by_type(self, state_type: str) -> List[StateDocument]:
        """All state documents of a type, ordered by name."""
        _check_state_type(state_type)
        with self.db.session() as session:
            rows = session.scalars(select(StateRow).where(StateRow.type == state_type).order_by(StateRow.name)).all()
            return [self._row_to_state(row) for row in rows]

    def upsert(self, state_type: str, name: str, content: str) -> StateDocument:
        """Create or overwrite the document for (type, name). Last write wins."""
        _check_state_type(state_type)
        if not name or not name.strip():
            raise ValueError('State document name is required')

        document = StateDocument(id=state_id(state_type, name),
                                 type=state_type,
                                 name=name,
                                 content=content,
                                 updated_at=to_iso())
        with self.db.session() as session:
            session.merge(
                StateRow(id=document.id,
                         type=document.type,
                         name=document.name,
                         content=document.content,
                         updated_at=document.updated_at))
            session.commit()

        logger.debug(f'Saved state {state_type}/{name}')
        return document

    # ==================== JOURNAL ====================

    def append_journal(self, topic: str, content: str, intent: Optional[str] = None) -> JournalEntry:
        """Append an immutable journal entry and return it."""
        if not topic or not topic.strip():
            raise ValueError('Journal topic is required')

        entry = JournalEntry(id=f'journal-{epoch_millis()}-{uuid.uuid4().hex[:8]}',
                             topic=topic,
                             content=content,
                             intent=intent or None,
                             timestamp=to_iso())
        with self.db.session() as session:
            session.add(
                JournalRow(id=entry.id,
                           topic=entry.topic,
                           content=entry.content,
                           intent=entry.intent,
                           timestamp=entry.timestamp))
            session.commit()

        logger.debug(f'Journal entry {entry.id} saved under {topic}')
        return entry

    def recent_journal(self, limit: int = 20) -> List[JournalEntry]:
        """Most recent journal entries first."""
        if limit <= 0:
            return []
        with self.db.session() as session:
            rows = session.scalars(
                select(JournalRow).order_by(JournalRow.timestamp.desc(), JournalRow.seq.desc()).limit(limit)).all()
            return [self._row_to_journal(row) for row in rows]

    @staticmethod
    def _row_to_state(row: StateRow) -> StateDocument:
        return StateDocument(id=row.id, type=row.type, name=row.name, content=row.content, updated_at=row.updated_at)

    @staticmethod
    def _row_to_journal(row: JournalRow) -> JournalEntry:
        return JournalEntry(id=row.id, topic=row.topic, content=row.content, intent=row.intent, timestamp=row.timestamp)
