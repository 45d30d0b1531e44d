"""
Task Runner: executes scheduled and ad-hoc background tasks as bounded agent loops.

Background tasks see the owner's identity, user profile and today document and
operate on memory through a small tool set. A failed scheduled run is journaled
and never raised to the scheduler.
"""

from typing import List, Optional

from ..models.core import REFINE_TASKS, STATE_TYPES, Schedule
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import SchedulerConfig, config
from ..utils.logging_config import get_logger
from .agent_loop import AgentLoop, AgentTool
from .entity_store import EntityStore
from .memory_writer import MemoryWriter
from .vector_mirror import IndexDesyncError, VectorMirror

logger = get_logger(__name__)

TASK_PROMPTS = {
    'consolidate': ('Review recent journal entries and consolidate learnings into updated topics. '
                    'Use search_memory to find relevant entries, then use write_state to update or create topics. '
                    'Identify patterns and knowledge worth preserving.'),
    'reflect': ('Reflect on recent activity and identify insights, patterns, or things worth remembering. '
                'Search memory for recent entries, log important observations to journal, and update relevant topics.'),
    'cleanup': ('Review memory for stale, outdated, or redundant entries. '
                "Search for old topics, check if they're still accurate, and update or consolidate as needed. "
                'Keep the knowledge base current.'),
    'briefing': ("Prepare a briefing of what's important and what needs attention. "
                 'Search memory for recent activity, priorities, and open threads. Summarize key points.'),
}
CUSTOM_FALLBACK_PROMPT = 'Execute the scheduled task using available tools.'

REFINE_PROMPTS = {
    'consolidate': ('Review recent journal entries and consolidate them into updated topics. '
                    'Look for patterns, recurring themes, and knowledge worth preserving. '
                    'Create or update topic files as needed.'),
    'reflect': ('Reflect on recent activity and identify insights, patterns, or things worth remembering. '
                'Log important observations to journal and update relevant topics.'),
    'cleanup': ('Review memory for stale, outdated, or redundant entries. '
                'Update or remove outdated information from topics. Keep things current.'),
    'research': ('Research and gather information from memory and connected tools. '
                 'Save findings to relevant topics or journal.'),
}


def build_task_prompt(task_type: str, payload: Optional[str] = None) -> str:
    """Instruction for a scheduled task. Custom tasks use the payload verbatim."""
    if task_type == 'custom' or task_type not in TASK_PROMPTS:
        return payload or CUSTOM_FALLBACK_PROMPT
    base = TASK_PROMPTS[task_type]
    if payload:
        return f'{base}\n\nAdditional instructions: {payload}'
    return base


class TaskRunner:
    """Runs background agent tasks against one owner's memory."""

    def __init__(self,
                 store: EntityStore,
                 mirror: VectorMirror,
                 llm: Optional[BedrockLLM] = None,
                 scheduler_config: Optional[SchedulerConfig] = None):
        self.store = store
        self.mirror = mirror
        self.writer = MemoryWriter(store, mirror)
        self.llm = llm or BedrockLLM(config.bedrock_llm)
        self.config = scheduler_config or config.scheduler

    # ==================== CONTEXT ====================

    def agent_context(self) -> str:
        """Identity, user and today sections, whichever exist."""
        sections = [('Identity', 'identity', 'identity'), ('User', 'person', 'user'), ('Today', 'today', 'today')]
        parts = []
        for title, state_type, name in sections:
            document = self.store.get(state_type, name)
            if document:
                parts.append(f'## {title}\n{document.content}')
        return '\n\n'.join(parts)

    def build_system_prompt(self, task_label: str) -> str:
        return (f'You are a background agent performing a scheduled task. '
                f'You have access to tools to read and write memory.\n\n'
                f'{self.agent_context()}\n\n'
                f'## Task\n{task_label}\n\n'
                f'Complete the task using the available tools. Be thorough but concise.')

    # ==================== TOOLS ====================

    def agent_tools(self) -> List[AgentTool]:
        """Memory tools exposed to background agents."""
        return [
            AgentTool(name='write_state',
                      description='Write or update a state file (identity, today, topic, project, person)',
                      input_schema={
                          'type': 'object',
                          'properties': {
                              'type': {'type': 'string', 'enum': list(STATE_TYPES)},
                              'name': {'type': 'string', 'description': 'State file name'},
                              'content': {'type': 'string', 'description': 'Content to write'},
                          },
                          'required': ['type', 'name', 'content'],
                      },
                      handler=self._tool_write_state),
            AgentTool(name='read_state',
                      description='Read a state file by type and name',
                      input_schema={
                          'type': 'object',
                          'properties': {
                              'type': {'type': 'string', 'enum': list(STATE_TYPES)},
                              'name': {'type': 'string', 'description': 'State file name'},
                          },
                          'required': ['type', 'name'],
                      },
                      handler=self._tool_read_state),
            AgentTool(name='log_journal',
                      description='Record an observation, decision, or thing to remember',
                      input_schema={
                          'type': 'object',
                          'properties': {
                              'topic': {'type': 'string', 'description': 'Short topic/category'},
                              'content': {'type': 'string', 'description': 'The journal entry content'},
                          },
                          'required': ['topic', 'content'],
                      },
                      handler=self._tool_log_journal),
            AgentTool(name='search_memory',
                      description='Search memory using semantic search',
                      input_schema={
                          'type': 'object',
                          'properties': {
                              'query': {'type': 'string', 'description': 'What to search for'},
                              'limit': {'type': 'integer', 'default': 5},
                          },
                          'required': ['query'],
                      },
                      handler=self._tool_search_memory),
            AgentTool(name='list_topics',
                      description='List all topics',
                      input_schema={'type': 'object', 'properties': {}},
                      handler=self._tool_list_topics),
        ]

    def _tool_write_state(self, type: str, name: str, content: str) -> str:
        try:
            self.writer.write_state(type, name, content)
        except IndexDesyncError as e:
            return f'Updated {type}: {name} (search index not updated: {e.cause})'
        return f'Updated {type}: {name}'

    def _tool_read_state(self, type: str, name: str) -> str:
        document = self.store.get(type, name)
        return document.content if document else f'Not found: {type}/{name}'

    def _tool_log_journal(self, topic: str, content: str) -> str:
        try:
            self.writer.log_journal(topic, content)
        except IndexDesyncError as e:
            return f'Journal entry saved: {topic} (search index not updated: {e.cause})'
        return f'Journal entry saved: {topic}'

    def _tool_search_memory(self, query: str, limit: int = 5) -> str:
        matches = self.mirror.query(query, limit=int(limit))
        if not matches:
            return 'No relevant memories found.'
        return '\n\n'.join(f'[{m.type}] {m.topic or m.name or ""}: {m.content}' for m in matches)

    def _tool_list_topics(self) -> str:
        topics = self.store.get_all_by_type('topic')
        if not topics:
            return 'No topics yet.'
        return '\n'.join(f'- {topic.name}' for topic in topics)

    # ==================== RUNS ====================

    def _run_agent(self, task_label: str, prompt: str, model_tier: str, max_steps: int) -> str:
        loop = AgentLoop(self.llm, self.agent_tools(), max_steps=max_steps)
        result = loop.run(self.build_system_prompt(task_label), prompt, model_tier=model_tier)
        logger.info(f'Task "{task_label}" completed in {result.steps} steps')
        return result.text

    def run_scheduled(self, schedule: Schedule) -> Optional[str]:
        """
        Run a scheduled task and journal the outcome.

        Never raises: failures are recorded under ``scheduled-<task>-error``.
        The schedule definition is not touched.

        Returns:
            The agent's text on success, None on failure
        """
        description = schedule.description or schedule.task_type
        logger.info(f'Running scheduled task {schedule.id}: {description}')

        try:
            result = self._run_agent(f'scheduled:{schedule.task_type}',
                                     build_task_prompt(schedule.task_type, schedule.payload),
                                     schedule.resolved_tier,
                                     self.config.scheduled_max_steps)
        except Exception as e:
            logger.error(f'Scheduled task {schedule.id} failed: {e}')
            self._journal_quietly(f'scheduled-{schedule.task_type}-error',
                                  f'Scheduled task failed: {description}\n\nError: {e}')
            return None

        self._journal_quietly(f'scheduled-{schedule.task_type}',
                              f'Completed scheduled task: {description}\n\nSummary: {result[:self.config.summary_cap]}')
        logger.info(f'Scheduled task complete: {description}')
        return result

    def _journal_quietly(self, topic: str, content: str) -> None:
        try:
            self.writer.log_journal(topic, content)
        except IndexDesyncError as e:
            logger.warning(f'Task journal entry saved but not indexed: {e}')
        except Exception as e:
            logger.error(f'Failed to journal task outcome under {topic}: {e}')

    def refine(self, task: str, focus: Optional[str] = None) -> str:
        """
        Ad-hoc deep processing of memory on the thinking tier.

        Errors are journaled under ``refine-<task>-error`` and returned as text.
        """
        if task not in REFINE_TASKS:
            return f"Unknown refine task '{task}', expected one of: {', '.join(REFINE_TASKS)}"

        prompt = REFINE_PROMPTS[task]
        if focus:
            prompt = f'{prompt}\n\nFocus area: {focus}'

        try:
            result = self._run_agent(f'refine:{task}', prompt, 'thinking', self.config.refine_max_steps)
        except Exception as e:
            logger.error(f'Refine {task} failed: {e}')
            self._journal_quietly(f'refine-{task}-error', f'Refinement failed: {task}\n\nError: {e}')
            return f'Refinement error: {e}'
        return f'## Refinement: {task}\n\n{result}'
