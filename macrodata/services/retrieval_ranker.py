"""
Retrieval Ranker: reorders exchange search hits by recency and project locality.
"""

import os
from datetime import datetime
from typing import List, Optional

from ..models.core import ConversationExchange, ExchangeSearchResult, ExpandedConversation
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import ConversationConfig, config
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import CONVERSATION_INDEX, OpenSearchClient
from ..utils.timestamp_utils import parse_iso, utc_now
from .conversation_indexer import assistant_text, iter_log_records, message_content, project_name, user_text

logger = get_logger(__name__)

PROJECT_BOOST = 1.5
CANDIDATE_MULTIPLIER = 3

# (max age in days, weight), checked in order
TIME_WEIGHTS = ((7, 1.0), (30, 0.9), (90, 0.7), (365, 0.5))
OLDEST_WEIGHT = 0.3


def time_weight(timestamp: str, now: Optional[datetime] = None) -> float:
    """Step-function recency weight. Unparseable timestamps count as oldest."""
    try:
        moment = parse_iso(timestamp)
    except (TypeError, ValueError):
        return OLDEST_WEIGHT

    age_days = ((now or utc_now()) - moment).total_seconds() / 86400
    for max_days, weight in TIME_WEIGHTS:
        if age_days <= max_days:
            return weight
    return OLDEST_WEIGHT


class RetrievalRanker:
    """Exchange search with time decay and current-project boost for one owner."""

    def __init__(self,
                 owner_id: str,
                 embed: Optional[BedrockEmbed] = None,
                 opensearch: Optional[OpenSearchClient] = None,
                 conversation_config: Optional[ConversationConfig] = None):
        self.owner_id = owner_id
        self.config = conversation_config or config.conversations
        self.embed = embed or BedrockEmbed(config.bedrock_embed)
        self.opensearch = opensearch or OpenSearchClient(config.opensearch)

    def search(self,
               query: str,
               current_project_path: Optional[str] = None,
               limit: int = 5,
               project_only: bool = False,
               now: Optional[datetime] = None) -> List[ExchangeSearchResult]:
        """
        Search past exchanges by adjusted relevance.

        ``adjusted = score * time_weight * (1.5 if same project else 1.0)``

        Args:
            query: Natural language query
            current_project_path: Project path to boost (and filter on with project_only)
            limit: Maximum number of results
            project_only: Keep only exchanges from the current project
            now: Reference time for decay (defaults to now)

        Returns:
            Results ordered by adjusted score, best first
        """
        if limit <= 0:
            return []
        if self.opensearch.count_documents(self.owner_id, index_type=CONVERSATION_INDEX) == 0:
            logger.debug(f'Conversation index is empty for owner {self.owner_id}')
            return []

        vector = self.embed.embed_query(query)
        hits = self.opensearch.vector_search(vector,
                                             self.owner_id,
                                             top_k=limit * CANDIDATE_MULTIPLIER,
                                             index_type=CONVERSATION_INDEX)
        now = now or utc_now()

        results = []
        for hit in hits:
            exchange = ConversationExchange.from_metadata(hit['id'], hit['document'])
            score = float(hit['score'])
            same_project = bool(current_project_path) and exchange.project_path == current_project_path
            if project_only and current_project_path and not same_project:
                continue

            adjusted = score * time_weight(exchange.timestamp, now)
            if same_project:
                adjusted *= PROJECT_BOOST
            results.append(ExchangeSearchResult(exchange=exchange, score=score, adjusted_score=adjusted))

        # Stable sort: equal scores keep the index's candidate order
        results.sort(key=lambda result: result.adjusted_score, reverse=True)
        return results[:limit]

    def expand_conversation(self, session_path: str, message_uuid: str, window_size: int = 10) -> ExpandedConversation:
        """
        Load the messages around an exchange from its session log.

        Falls back to the last ``window_size`` messages when the uuid is gone.

        Raises:
            FileNotFoundError: If the session log no longer exists
        """
        if not os.path.isfile(session_path):
            raise FileNotFoundError(f'Session file not found: {session_path}')

        messages = []
        uuids = []
        project = ''
        branch = None

        for record in iter_log_records(session_path):
            if record is None:
                continue
            content = message_content(record)
            if content is None:
                continue

            record_type = record.get('type')
            if record_type == 'user':
                text = user_text(content)
                if not project and record.get('cwd'):
                    project = project_name(record['cwd'])
                if not branch and record.get('gitBranch'):
                    branch = record['gitBranch']
            elif record_type == 'assistant':
                text = assistant_text(content, self.config.assistant_summary_cap)
            else:
                continue

            messages.append({'role': record_type, 'content': text, 'timestamp': record.get('timestamp')})
            uuids.append(record.get('uuid'))

        if window_size <= 0:
            return ExpandedConversation(messages=[], project=project, branch=branch)

        if message_uuid not in uuids:
            return ExpandedConversation(messages=messages[-window_size:], project=project, branch=branch)

        index = uuids.index(message_uuid)
        start = max(0, index - window_size // 2)
        end = min(len(messages), start + window_size)
        return ExpandedConversation(messages=messages[start:end], project=project, branch=branch)
