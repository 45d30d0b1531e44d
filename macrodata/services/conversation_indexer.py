"""
Exchange Indexer: turns session logs into searchable conversation exchanges.

Session logs live under ``<projects_dir>/<encoded-project>/<session>.jsonl``,
one JSON record per line. Each exchange is a user prompt paired with the first
text block of the assistant reply that follows it.
"""

import json
import os
import time
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..models.core import ConversationExchange, RebuildStats
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import ConversationConfig, config
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import CONVERSATION_INDEX, OpenSearchClient, OpenSearchError
from ..utils.timestamp_utils import to_iso

logger = get_logger(__name__)


def decode_project_path(encoded: str) -> str:
    """Decode a project directory name, e.g. ``-Users-me-repo`` -> ``/Users/me/repo``."""
    if encoded.startswith('-'):
        encoded = '/' + encoded[1:]
    return encoded.replace('-', '/')


def project_name(project_path: str) -> str:
    return os.path.basename(project_path.rstrip('/'))


def scan_conversation_files(projects_dir: str) -> Iterator[Tuple[str, str]]:
    """Lazily yield ``(file_path, project_path)`` for every main session log.

    Hidden project directories, non-``.jsonl`` files and ``agent-*`` sidechain
    logs are skipped.
    """
    if not os.path.isdir(projects_dir):
        return

    for project_dir in sorted(os.listdir(projects_dir)):
        if project_dir.startswith('.'):
            continue
        project_full_path = os.path.join(projects_dir, project_dir)
        if not os.path.isdir(project_full_path):
            continue

        project_path = decode_project_path(project_dir)
        for file_name in sorted(os.listdir(project_full_path)):
            if not file_name.endswith('.jsonl') or file_name.startswith('agent-'):
                continue
            yield os.path.join(project_full_path, file_name), project_path


def iter_log_records(file_path: str) -> Iterator[Optional[Dict[str, Any]]]:
    """Stream the records of a session log. Malformed lines yield None.

    Raises:
        OSError: If the file cannot be opened or read
    """
    with open(file_path, 'r', encoding='utf-8', errors='replace') as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                yield None
                continue
            yield record if isinstance(record, dict) else None


def message_content(record: Dict[str, Any]) -> Any:
    message = record.get('message')
    if not isinstance(message, dict):
        return None
    return message.get('content') or None


def user_text(content: Any) -> str:
    """Plain text of a user message: the string itself or its text blocks joined."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return ''.join(block['text'] for block in content
                       if isinstance(block, dict) and isinstance(block.get('text'), str))
    return ''


def assistant_text(content: Any, cap: int) -> str:
    """First text block of an assistant message, truncated to ``cap`` characters."""
    if isinstance(content, str):
        return content[:cap]
    if isinstance(content, list):
        for block in content:
            if not isinstance(block, dict) or block.get('type') != 'text':
                continue
            text = block.get('text')
            if isinstance(text, str) and text:
                return text[:cap]
    return ''


def parse_conversation_file(file_path: str,
                            project_path: str,
                            conversation_config: Optional[ConversationConfig] = None
                            ) -> Tuple[List[ConversationExchange], int]:
    """
    Pair user prompts with the assistant reply that follows them.

    A user record replaces any unanswered pending prompt; an assistant record
    with no pending prompt is ignored. Pairs with empty text on either side
    produce nothing but still consume the pending prompt.

    Args:
        file_path: Path of the session log
        project_path: Decoded path of the project the session belongs to
        conversation_config: Length caps (uses global config if None)

    Returns:
        Tuple of (exchanges in file order, number of malformed lines skipped)

    Raises:
        OSError: If the file cannot be read
    """
    conversation_config = conversation_config or config.conversations
    name = project_name(project_path)
    fallback_session_id = os.path.splitext(os.path.basename(file_path))[0]

    exchanges = []
    skipped = 0
    pending = None

    for record in iter_log_records(file_path):
        if record is None:
            skipped += 1
            continue

        record_type = record.get('type')
        content = message_content(record)
        if content is None:
            continue

        if record_type == 'user':
            pending = record
        elif record_type == 'assistant' and pending is not None:
            prompt = user_text(message_content(pending))
            reply = assistant_text(content, conversation_config.assistant_summary_cap)

            if prompt and reply:
                session_id = pending.get('sessionId') or fallback_session_id
                message_uuid = pending.get('uuid') or ''
                exchanges.append(
                    ConversationExchange(id=f'conv-{session_id}-{message_uuid}',
                                         user_prompt=prompt[:conversation_config.user_prompt_cap],
                                         assistant_summary=reply,
                                         project=name,
                                         project_path=project_path,
                                         branch=pending.get('gitBranch') or None,
                                         timestamp=pending.get('timestamp') or to_iso(),
                                         session_id=session_id,
                                         session_path=file_path,
                                         message_uuid=message_uuid))
            pending = None

    return exchanges, skipped


class ConversationIndexer:
    """Builds and maintains the exchange vector index for one owner."""

    def __init__(self,
                 owner_id: str,
                 embed: Optional[BedrockEmbed] = None,
                 opensearch: Optional[OpenSearchClient] = None,
                 conversation_config: Optional[ConversationConfig] = None):
        self.owner_id = owner_id
        self.config = conversation_config or config.conversations
        self.embed = embed or BedrockEmbed(config.bedrock_embed)
        self.opensearch = opensearch or OpenSearchClient(config.opensearch)

        try:
            self.opensearch.create_index_if_not_exists(index_type=CONVERSATION_INDEX)
        except OpenSearchError as e:
            logger.warning(f'Failed to create OpenSearch conversation index: {e}')

    def rebuild(self, projects_dir: Optional[str] = None) -> RebuildStats:
        """
        Re-scan every session log and upsert all exchanges by id.

        Safe to repeat: unchanged logs produce the same ids and counts.

        Args:
            projects_dir: Root of the session logs (uses config if None)

        Returns:
            RebuildStats for the run

        Raises:
            BedrockEmbedError: If embedding fails
            OpenSearchError: If writing to the index fails
        """
        projects_dir = projects_dir or self.config.projects_dir
        stats = RebuildStats()
        start_time = time.time()

        logger.info(f'Starting conversation index rebuild from {projects_dir}')

        for file_path, project_path in scan_conversation_files(projects_dir):
            stats.files_scanned += 1
            try:
                exchanges, skipped = parse_conversation_file(file_path, project_path, self.config)
            except Exception as e:
                logger.error(f'Failed to parse {file_path}: {e}')
                stats.files_skipped += 1
                continue

            stats.lines_skipped += skipped
            stats.exchange_count += self._index_exchanges(exchanges)

        stats.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(f'Conversation index rebuild complete: {stats.exchange_count} exchanges from '
                    f'{stats.files_scanned} files in {stats.duration_ms}ms')
        return stats

    def _index_exchanges(self, exchanges: List[ConversationExchange]) -> int:
        batch_size = max(1, self.config.embed_batch_size)
        written = 0

        for start in range(0, len(exchanges), batch_size):
            batch = exchanges[start:start + batch_size]
            vectors = self.embed.embed_documents([exchange.embedding_text for exchange in batch])

            documents = []
            for exchange, vector in zip(batch, vectors):
                document = exchange.to_metadata()
                document['owner_id'] = self.owner_id
                document['embedding'] = vector
                documents.append(document)

            self.opensearch.bulk_upsert(documents, index_type=CONVERSATION_INDEX)
            written += len(batch)

        return written

    def exchange_count(self) -> int:
        """Number of exchanges currently indexed for this owner."""
        return self.opensearch.count_documents(self.owner_id, index_type=CONVERSATION_INDEX)
