"""
Core data models for the layered memory engine.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

STATE_TYPES = ('identity', 'today', 'topic', 'project', 'person')
TASK_TYPES = ('consolidate', 'reflect', 'cleanup', 'briefing', 'custom')
REFINE_TASKS = ('consolidate', 'reflect', 'cleanup', 'research')
SCHEDULE_KINDS = ('cron', 'once')
MODEL_TIERS = ('fast', 'thinking')

# Task types that default to the deep reasoning tier
THINKING_TASKS = ('reflect', 'cleanup', 'consolidate')


def state_id(state_type: str, name: str) -> str:
    """Deterministic id shared by a state document and its vector record."""
    return f'state-{state_type}-{name}'


@dataclass
class StateDocument:
    """A mutable, named, typed memory record. Unique per (type, name)."""
    id: str
    type: str
    name: str
    content: str
    updated_at: str


@dataclass
class JournalEntry:
    """An immutable, timestamped, topic-tagged observation."""
    id: str
    topic: str
    content: str
    timestamp: str
    intent: Optional[str] = None


@dataclass
class ConversationSummary:
    """Summary of a conversation, kept only in the vector index."""
    id: str
    summary: str
    timestamp: str
    key_decisions: List[str] = field(default_factory=list)
    open_threads: List[str] = field(default_factory=list)
    learned_patterns: List[str] = field(default_factory=list)

    @property
    def content(self) -> str:
        """Searchable text: the summary followed by non-empty lists."""
        parts = [self.summary]
        if self.key_decisions:
            parts.append(f"\nDecisions: {', '.join(self.key_decisions)}")
        if self.open_threads:
            parts.append(f"\nOpen threads: {', '.join(self.open_threads)}")
        if self.learned_patterns:
            parts.append(f"\nLearned: {', '.join(self.learned_patterns)}")
        return ''.join(parts)


@dataclass
class VectorMatch:
    """A semantic search hit from the memory mirror."""
    type: str
    content: str
    score: float
    topic: Optional[str] = None
    name: Optional[str] = None


@dataclass
class ConversationExchange:
    """One (user prompt, assistant response) pair extracted from a session log."""
    id: str
    user_prompt: str
    assistant_summary: str
    project: str
    project_path: str
    timestamp: str
    session_id: str
    session_path: str
    message_uuid: str
    branch: Optional[str] = None

    @property
    def embedding_text(self) -> str:
        """Text embedded for this exchange, weighted toward the request."""
        branch = f' ({self.branch})' if self.branch else ''
        return f'{self.project}{branch}: {self.user_prompt}'

    def to_metadata(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_prompt': self.user_prompt,
            'assistant_summary': self.assistant_summary,
            'project': self.project,
            'project_path': self.project_path,
            'branch': self.branch or '',
            'timestamp': self.timestamp,
            'session_id': self.session_id,
            'session_path': self.session_path,
            'message_uuid': self.message_uuid,
        }

    @classmethod
    def from_metadata(cls, doc_id: str, meta: Dict[str, Any]) -> 'ConversationExchange':
        return cls(id=doc_id,
                   user_prompt=meta.get('user_prompt', ''),
                   assistant_summary=meta.get('assistant_summary', ''),
                   project=meta.get('project', ''),
                   project_path=meta.get('project_path', ''),
                   timestamp=meta.get('timestamp', ''),
                   session_id=meta.get('session_id', ''),
                   session_path=meta.get('session_path', ''),
                   message_uuid=meta.get('message_uuid', ''),
                   branch=meta.get('branch') or None)


@dataclass
class ExchangeSearchResult:
    """An exchange with its raw similarity and its recency/locality adjusted score."""
    exchange: ConversationExchange
    score: float
    adjusted_score: float


@dataclass
class ExpandedConversation:
    """A window of messages around an exchange, re-read from its session log."""
    messages: List[Dict[str, Optional[str]]]
    project: str
    branch: Optional[str] = None


@dataclass
class RebuildStats:
    """Aggregate counts from an indexing run."""
    files_scanned: int = 0
    files_skipped: int = 0
    lines_skipped: int = 0
    exchange_count: int = 0
    duration_ms: int = 0


@dataclass
class Schedule:
    """An autonomous task definition."""
    id: str
    kind: str
    expression: str
    task_type: str
    description: str
    payload: str = ''
    model_tier: Optional[str] = None
    next_run_at: Optional[str] = None
    last_run_at: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def resolved_tier(self) -> str:
        """Explicit override, else thinking for deep tasks and fast for the rest."""
        if self.model_tier:
            return self.model_tier
        return 'thinking' if self.task_type in THINKING_TASKS else 'fast'


@dataclass
class ConnectedServer:
    """A remote MCP tool server from the owner's credential registry."""
    name: str
    endpoint: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    connected_at: Optional[str] = None
