"""
Text tool surface over an owner's memory.

Every operation runs on the owner's actor and returns text. Expected failures
(not found, index desync, remote errors, invalid input) become readable
messages instead of exceptions.
"""

from typing import Any, Callable, Dict, List, Optional

from ..utils.logging_config import get_logger
from .owner_runtime import OwnerRegistry, OwnerServices
from .remote_tools import RemoteToolError
from .scheduler import ScheduleError
from .vector_mirror import IndexDesyncError, VectorMirrorError

logger = get_logger(__name__)

ONBOARDING_TEXT = """# First Run - Onboarding Needed

I'm a new agent with no memory. I need to learn about my user before I can help effectively.

## What to Learn

Get to know the user through conversation. Some useful things to understand:
- What they do and what they're working on
- How they prefer to communicate (concise vs detailed, formal vs casual)
- Their timezone and typical work schedule (for scheduling reviews)
- What they want help with

Don't interrogate - have a natural conversation.

## Setup Steps

Once you understand the user:

### 1. Create identity
```
write_state(
  type: "identity",
  name: "identity",
  content: "# [Name]\\n\\nI am a stateful agent for [user]. I help with [focus areas].\\n\\n## Communication Style\\n[based on preferences]\\n\\n## Operating Principles\\n- Write state immediately when something happens\\n- Search memory before claiming ignorance\\n- Capture learnings in the moment"
)
```

### 2. Create user profile
```
write_state(
  type: "person",
  name: "user",
  content: "# [Name]\\n\\n## Role\\n[what they do]\\n\\n## Timezone\\n[e.g., Europe/London]\\n\\n## Work Schedule\\n[e.g., 9am-6pm]"
)
```

### 3. Set up end-of-day review
```
schedule_recurring(
  id: "end-of-day",
  cron: "0 18 * * 1-5",
  description: "End of day review",
  task: "reflect",
  payload: "Review today's conversations and activity. Identify key learnings, decisions made, and open threads. Update relevant topics. Note anything to follow up on tomorrow.",
  model: "thinking"
)
```

### 4. Set up weekly memory maintenance
```
schedule_recurring(
  id: "memory-maintenance",
  cron: "0 3 * * 0",
  description: "Weekly memory maintenance",
  task: "cleanup",
  payload: "Review all topics and journal entries from the past week. Consolidate related learnings. Prune outdated information. Identify patterns worth preserving as new topics.",
  model: "thinking"
)
```

Then you're ready to help."""


class MemoryTools:
    """Owner-scoped memory operations returning user-facing text."""

    def __init__(self, registry: Optional[OwnerRegistry] = None):
        self.registry = registry or OwnerRegistry()

    def _run(self, user_id: str, operation: Callable[..., str], *args, **kwargs) -> str:
        try:
            services = self.registry.get(user_id)
            return services.actor.call(operation, services, *args, **kwargs)
        except IndexDesyncError as e:
            logger.warning(f'Index desync for owner {user_id}: {e}')
            return str(e)
        except VectorMirrorError as e:
            return f'Memory search failed: {e}'
        except RemoteToolError as e:
            return f'Remote tool error: {e}'
        except ScheduleError as e:
            return f'Invalid schedule: {e}'
        except ValueError as e:
            return f'Invalid request: {e}'
        except Exception as e:
            logger.error(f'Unexpected error in {operation.__name__} for owner {user_id}: {e}')
            return f'Error: {e}'

    # ==================== CONTEXT ====================

    def get_context(self, user_id: str) -> str:
        return self._run(user_id, self._get_context)

    @staticmethod
    def _get_context(services: OwnerServices) -> str:
        store = services.store
        identity = store.get('identity', 'identity')
        if identity is None:
            return ONBOARDING_TEXT

        user = store.get('person', 'user')
        today = store.get('today', 'today')
        recent = '\n'.join(f'- [{entry.topic}] {entry.content}' for entry in store.recent_journal(5))
        schedules = services.schedules.list()
        schedule_summary = '\n'.join(f'- {s.description or s.id}'
                                     for s in schedules) if schedules else 'No schedules configured.'

        return (f'## Identity\n{identity.content}\n\n'
                f"## User\n{user.content if user else 'No user profile yet.'}\n\n"
                f"## Today\n{today.content if today else 'No focus set for today.'}\n\n"
                f"## Recent Activity\n{recent or 'No recent entries.'}\n\n"
                f'## Active Schedules\n{schedule_summary}')

    # ==================== STATE ====================

    def write_state(self, user_id: str, type: str, name: str, content: str) -> str:
        return self._run(user_id, self._write_state, type, name, content)

    @staticmethod
    def _write_state(services: OwnerServices, type: str, name: str, content: str) -> str:
        services.writer.write_state(type, name, content)
        return f'Updated {type}: {name}'

    def read_state(self, user_id: str, type: str, name: str) -> str:
        return self._run(user_id, self._read_state, type, name)

    @staticmethod
    def _read_state(services: OwnerServices, type: str, name: str) -> str:
        document = services.store.get(type, name)
        if document is None:
            return f'State file not found: {type}/{name}'
        return f'# {document.name}\n\n{document.content}'

    def list_states(self, user_id: str, type: str) -> str:
        return self._run(user_id, self._list_states, type)

    @staticmethod
    def _list_states(services: OwnerServices, type: str) -> str:
        documents = services.store.get_all_by_type(type)
        if not documents:
            return f'No {type} files yet.'
        formatted = '\n'.join(f'- {document.name} (updated {document.updated_at})' for document in documents)
        return f'## {type.capitalize()} files\n\n{formatted}'

    def list_topics(self, user_id: str) -> str:
        return self._run(user_id, self._list_topics)

    @staticmethod
    def _list_topics(services: OwnerServices) -> str:
        topics = services.store.get_all_by_type('topic')
        if not topics:
            return 'No topics yet.'
        return '## Topics\n\n' + '\n'.join(f'- {topic.name}' for topic in topics)

    # ==================== JOURNAL ====================

    def log_journal(self, user_id: str, topic: str, content: str, intent: Optional[str] = None) -> str:
        return self._run(user_id, self._log_journal, topic, content, intent)

    @staticmethod
    def _log_journal(services: OwnerServices, topic: str, content: str, intent: Optional[str]) -> str:
        entry = services.writer.log_journal(topic, content, intent)
        logger.debug(f'Journal entry saved with ID: {entry.id}')
        return f'Journal entry saved: {topic}'

    def get_recent_journal(self, user_id: str, limit: int = 10) -> str:
        return self._run(user_id, self._get_recent_journal, limit)

    @staticmethod
    def _get_recent_journal(services: OwnerServices, limit: int) -> str:
        entries = services.store.recent_journal(limit)
        if not entries:
            return 'No journal entries yet.'
        return '\n\n'.join(f'[{entry.timestamp}] {entry.topic}: {entry.content}' for entry in entries)

    # ==================== SEARCH ====================

    def search_memory(self, user_id: str, query: str, limit: int = 5, type: str = 'all') -> str:
        return self._run(user_id, self._search_memory, query, limit, type)

    @staticmethod
    def _search_memory(services: OwnerServices, query: str, limit: int, type: str) -> str:
        if not query or not query.strip():
            return 'No relevant memories found.'
        matches = services.mirror.query(query, limit=limit, type_filter=type)
        if not matches:
            return 'No relevant memories found.'
        return '\n\n---\n\n'.join(f'[{match.type}] ({match.score * 100:.0f}% match) '
                                  f"{match.topic or match.name or ''}:\n{match.content}" for match in matches)

    def save_conversation_summary(self,
                                  user_id: str,
                                  summary: str,
                                  key_decisions: Optional[List[str]] = None,
                                  open_threads: Optional[List[str]] = None,
                                  learned_patterns: Optional[List[str]] = None) -> str:
        return self._run(user_id, self._save_conversation_summary, summary, key_decisions, open_threads,
                         learned_patterns)

    @staticmethod
    def _save_conversation_summary(services: OwnerServices, summary: str, key_decisions: Optional[List[str]],
                                   open_threads: Optional[List[str]], learned_patterns: Optional[List[str]]) -> str:
        if not summary or not summary.strip():
            raise ValueError('Summary is required')
        services.writer.save_summary(summary, key_decisions, open_threads, learned_patterns)
        return 'Conversation summary saved.'

    # ==================== CONVERSATIONS ====================

    def search_conversations(self,
                             user_id: str,
                             query: str,
                             current_project_path: Optional[str] = None,
                             limit: int = 5,
                             project_only: bool = False) -> str:
        return self._run(user_id, self._search_conversations, query, current_project_path, limit, project_only)

    @staticmethod
    def _search_conversations(services: OwnerServices, query: str, current_project_path: Optional[str], limit: int,
                              project_only: bool) -> str:
        results = services.ranker.search(query,
                                         current_project_path=current_project_path,
                                         limit=limit,
                                         project_only=project_only)
        if not results:
            return 'No matching conversations found.'

        blocks = []
        for result in results:
            exchange = result.exchange
            branch = f' ({exchange.branch})' if exchange.branch else ''
            blocks.append(f'**{exchange.project}{branch}** {exchange.timestamp} '
                          f'(score {result.adjusted_score:.2f})\n'
                          f'User: {exchange.user_prompt}\n'
                          f'Assistant: {exchange.assistant_summary}\n'
                          f'Session: {exchange.session_path} message {exchange.message_uuid}')
        return '\n\n---\n\n'.join(blocks)

    def expand_conversation(self, user_id: str, session_path: str, message_uuid: str, window_size: int = 10) -> str:
        return self._run(user_id, self._expand_conversation, session_path, message_uuid, window_size)

    @staticmethod
    def _expand_conversation(services: OwnerServices, session_path: str, message_uuid: str, window_size: int) -> str:
        try:
            expanded = services.ranker.expand_conversation(session_path, message_uuid, window_size)
        except FileNotFoundError:
            return f'Session file not found: {session_path}'

        if not expanded.messages:
            return 'No messages found in session.'
        branch = f' ({expanded.branch})' if expanded.branch else ''
        header = f'## {expanded.project or "Conversation"}{branch}'
        lines = [f"**{message['role']}** {message.get('timestamp') or ''}\n{message['content']}"
                 for message in expanded.messages]
        return header + '\n\n' + '\n\n'.join(lines)

    def rebuild_conversation_index(self, user_id: str) -> str:
        return self._run(user_id, self._rebuild_conversation_index)

    @staticmethod
    def _rebuild_conversation_index(services: OwnerServices) -> str:
        stats = services.indexer.rebuild()
        return (f'Indexed {stats.exchange_count} exchanges from {stats.files_scanned} files '
                f'in {stats.duration_ms}ms ({stats.files_skipped} files and {stats.lines_skipped} lines skipped)')

    # ==================== SCHEDULES ====================

    def schedule_recurring(self,
                           user_id: str,
                           id: str,
                           cron: str,
                           description: str,
                           task: str,
                           payload: Optional[str] = None,
                           model: Optional[str] = None) -> str:
        return self._run(user_id, self._schedule, 'cron', id, cron, description, task, payload, model)

    def schedule_once(self,
                      user_id: str,
                      id: str,
                      datetime: str,
                      description: str,
                      task: str,
                      payload: Optional[str] = None,
                      model: Optional[str] = None) -> str:
        return self._run(user_id, self._schedule, 'once', id, datetime, description, task, payload, model)

    @staticmethod
    def _schedule(services: OwnerServices, kind: str, schedule_id: str, expression: str, description: str, task: str,
                  payload: Optional[str], model: Optional[str]) -> str:
        # The description doubles as instructions when no payload is given
        schedule = services.schedules.create(schedule_id,
                                             kind,
                                             expression,
                                             task,
                                             description,
                                             payload=payload if payload is not None else description,
                                             model_tier=model)
        if kind == 'cron':
            return f'Scheduled recurring task "{description}" with cron: {expression}'
        return f'Scheduled one-time task "{description}" for {schedule.next_run_at}'

    def list_schedules(self, user_id: str) -> str:
        return self._run(user_id, self._list_schedules)

    @staticmethod
    def _list_schedules(services: OwnerServices) -> str:
        schedules = services.schedules.list()
        if not schedules:
            return 'No scheduled tasks.'

        formatted = []
        for s in schedules:
            kind_info = f'cron: {s.expression}' if s.kind == 'cron' else f'once: {s.expression}'
            formatted.append(f'- **{s.id}**: {s.description or s.task_type}\n'
                             f'  {kind_info}\n'
                             f"  Next: {s.next_run_at or 'N/A'}")
        return '## Scheduled Tasks\n\n' + '\n\n'.join(formatted)

    def cancel_schedule(self, user_id: str, id: str) -> str:
        return self._run(user_id, self._cancel_schedule, id)

    @staticmethod
    def _cancel_schedule(services: OwnerServices, schedule_id: str) -> str:
        if services.schedules.cancel(schedule_id):
            return f'Cancelled schedule: {schedule_id}'
        return f'Schedule not found: {schedule_id}'

    def refine(self, user_id: str, task: str, focus: Optional[str] = None) -> str:
        return self._run(user_id, self._refine, task, focus)

    @staticmethod
    def _refine(services: OwnerServices, task: str, focus: Optional[str]) -> str:
        return services.runner.refine(task, focus)

    # ==================== EXTERNAL TOOLS ====================

    def list_external_mcps(self, user_id: str) -> str:
        return self._run(user_id, self._list_external_mcps)

    @staticmethod
    def _list_external_mcps(services: OwnerServices) -> str:
        servers = services.credentials.servers()
        if not servers:
            return 'No external MCPs connected.'
        return '## Connected MCPs\n\n' + '\n'.join(f'- **{server.name}**: {server.endpoint}' for server in servers)

    def list_external_tools(self, user_id: str, mcp_name: str) -> str:
        return self._run(user_id, self._list_external_tools, mcp_name)

    @staticmethod
    def _list_external_tools(services: OwnerServices, mcp_name: str) -> str:
        server = services.credentials.get(mcp_name)
        if server is None:
            return f'MCP "{mcp_name}" not found. Use list_external_mcps to see available MCPs.'

        try:
            tools = services.remote.list_tools(server)
        except RemoteToolError as e:
            return f'Error fetching tools from {mcp_name}: {e}'
        if not tools:
            return f'No tools available from {mcp_name}.'

        formatted = '\n'.join(f"- **{tool.get('name')}**: {tool.get('description') or '(no description)'}"
                              for tool in tools)
        return f'## Tools from {mcp_name}\n\n{formatted}'

    def call_external_tool(self,
                           user_id: str,
                           mcp_name: str,
                           tool_name: str,
                           args: Optional[Dict[str, Any]] = None) -> str:
        return self._run(user_id, self._call_external_tool, mcp_name, tool_name, args)

    @staticmethod
    def _call_external_tool(services: OwnerServices, mcp_name: str, tool_name: str,
                            args: Optional[Dict[str, Any]]) -> str:
        server = services.credentials.get(mcp_name)
        if server is None:
            return f'MCP "{mcp_name}" not found. Use list_external_mcps to see available MCPs.'

        try:
            return services.remote.call_tool(server, tool_name, args or {})
        except RemoteToolError as e:
            return f'Error calling {tool_name} on {mcp_name}: {e}'

