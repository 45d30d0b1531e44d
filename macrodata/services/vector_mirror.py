"""
Vector Mirror: semantic index derived from the Entity Store.

Every state document, journal entry and conversation summary gets one vector
record sharing its id. Records are eventually consistent with the store: a
failed sync never undoes the store write, it is reported as an
``IndexDesyncError`` instead.
"""

from typing import Any, Dict, List, Optional

from ..models.core import STATE_TYPES, ConversationSummary, JournalEntry, StateDocument, VectorMatch
from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import MEMORY_INDEX, OpenSearchClient, OpenSearchError

logger = get_logger(__name__)

# Values accepted for the metadata type filter
MEMORY_TYPES = ('journal', 'summary') + STATE_TYPES


class VectorMirrorError(Exception):
    """Custom exception for vector mirror query errors."""
    pass


class IndexDesyncError(Exception):
    """Raised when an entity was stored but its vector record could not be written."""

    def __init__(self, entity_id: str, cause: Exception):
        self.entity_id = entity_id
        self.cause = cause
        super().__init__(f'Saved {entity_id} but failed to update the search index: {cause}')


class VectorMirror:
    """Embeds memory records and serves filtered semantic queries for one owner."""

    def __init__(self,
                 owner_id: str,
                 embed: Optional[BedrockEmbed] = None,
                 opensearch: Optional[OpenSearchClient] = None):
        """
        Initialize the mirror.

        Args:
            owner_id: Owner whose records this mirror reads and writes
            embed: Embedding client (built from config if None)
            opensearch: Vector index client (built from config if None)
        """
        self.owner_id = owner_id
        self.embed = embed or BedrockEmbed(config.bedrock_embed)
        self.opensearch = opensearch or OpenSearchClient(config.opensearch)

        try:
            self.opensearch.create_index_if_not_exists(index_type=MEMORY_INDEX)
        except OpenSearchError as e:
            logger.warning(f'Failed to create OpenSearch memory index: {e}')

    def sync_state(self, document: StateDocument) -> None:
        """Mirror a state document. Raises IndexDesyncError on failure."""
        text = f'{document.type} {document.name}: {document.content}'
        self._sync(document.id, text, {
            'type': document.type,
            'name': document.name,
            'content': document.content,
            'timestamp': document.updated_at,
        })

    def sync_journal(self, entry: JournalEntry) -> None:
        """Mirror a journal entry. Raises IndexDesyncError on failure."""
        metadata = {
            'type': 'journal',
            'topic': entry.topic,
            'content': entry.content,
            'timestamp': entry.timestamp,
        }
        if entry.intent:
            metadata['intent'] = entry.intent
        self._sync(entry.id, f'{entry.topic}: {entry.content}', metadata)

    def sync_summary(self, summary: ConversationSummary) -> None:
        """Index a conversation summary. Raises IndexDesyncError on failure."""
        self._sync(summary.id, summary.content, {
            'type': 'summary',
            'content': summary.content,
            'timestamp': summary.timestamp,
        })

    def _sync(self, entity_id: str, text: str, metadata: Dict[str, Any]) -> None:
        try:
            vector = self.embed.embed_document(text)
            document = {'id': entity_id, 'owner_id': self.owner_id, 'embedding': vector}
            document.update(metadata)
            if not self.opensearch.upsert_document(entity_id, document, index_type=MEMORY_INDEX):
                raise OpenSearchError(f'Index rejected document {entity_id}')
        except (BedrockEmbedError, OpenSearchError) as e:
            logger.error(f'Vector sync failed for {entity_id}: {e}')
            raise IndexDesyncError(entity_id, e)

        logger.debug(f'Synced vector record {entity_id}')

    def query(self, text: str, limit: int = 5, type_filter: Optional[str] = None) -> List[VectorMatch]:
        """
        Semantic search over the owner's memory records.

        Args:
            text: Natural language query
            limit: Maximum number of matches
            type_filter: One of ``MEMORY_TYPES``; None or 'all' searches everything

        Returns:
            Matches ordered best first

        Raises:
            ValueError: If the type filter is unknown
            VectorMirrorError: If embedding or search fails
        """
        if type_filter == 'all':
            type_filter = None
        if type_filter is not None and type_filter not in MEMORY_TYPES:
            raise ValueError(f"Invalid type filter '{type_filter}', expected one of: all, {', '.join(MEMORY_TYPES)}")
        if limit <= 0:
            return []

        filters = {'type': type_filter} if type_filter else None
        try:
            vector = self.embed.embed_query(text)
            hits = self.opensearch.vector_search(vector,
                                                 self.owner_id,
                                                 top_k=limit,
                                                 index_type=MEMORY_INDEX,
                                                 filters=filters)
        except (BedrockEmbedError, OpenSearchError) as e:
            logger.error(f'Memory search failed: {e}')
            raise VectorMirrorError(f'Memory search failed: {e}')

        matches = []
        for hit in hits[:limit]:
            document = hit['document']
            matches.append(
                VectorMatch(type=document.get('type', ''),
                            content=document.get('content', ''),
                            score=float(hit['score']),
                            topic=document.get('topic'),
                            name=document.get('name')))
        return matches
