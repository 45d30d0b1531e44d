"""
Write path shared by the tool surface and background tasks.

Entities are committed to the store first and mirrored second. A mirror failure
surfaces as IndexDesyncError after the store write has already succeeded.
"""

from datetime import datetime, timezone
from typing import List, Optional

from ..models.core import ConversationSummary, JournalEntry, StateDocument
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import epoch_millis, to_iso
from .entity_store import EntityStore
from .vector_mirror import VectorMirror

logger = get_logger(__name__)


class MemoryWriter:

    def __init__(self, store: EntityStore, mirror: VectorMirror):
        self.store = store
        self.mirror = mirror

    def write_state(self, state_type: str, name: str, content: str) -> StateDocument:
        """Upsert a state document, then mirror it.

        Raises:
            ValueError: If the type or name is invalid (nothing is written)
            IndexDesyncError: If the document was saved but not mirrored
        """
        document = self.store.upsert(state_type, name, content)
        self.mirror.sync_state(document)
        return document

    def log_journal(self, topic: str, content: str, intent: Optional[str] = None) -> JournalEntry:
        """Append a journal entry, then mirror it.

        Raises:
            IndexDesyncError: If the entry was saved but not mirrored
        """
        entry = self.store.append_journal(topic, content, intent)
        self.mirror.sync_journal(entry)
        return entry

    def save_summary(self,
                     summary: str,
                     key_decisions: Optional[List[str]] = None,
                     open_threads: Optional[List[str]] = None,
                     learned_patterns: Optional[List[str]] = None) -> ConversationSummary:
        """Index a conversation summary. Summaries live only in the vector index."""
        now = datetime.now(timezone.utc)
        record = ConversationSummary(id=f"summary-{now.strftime('%Y-%m-%d')}-{epoch_millis()}",
                                     summary=summary,
                                     timestamp=to_iso(now),
                                     key_decisions=list(key_decisions or []),
                                     open_threads=list(open_threads or []),
                                     learned_patterns=list(learned_patterns or []))
        self.mirror.sync_summary(record)
        logger.debug(f'Saved conversation summary {record.id}')
        return record
