"""
MCP Interface Layer using fastmcp for agent orchestration.
"""
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from .services.memory_tools import MemoryTools
from .services.owner_runtime import OwnerRegistry
from .services.scheduler import Scheduler
from .utils.config import config
from .utils.health_check import format_health_status, get_health_status
from .utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Macrodata')
registry = OwnerRegistry()
tools = MemoryTools(registry)
scheduler = Scheduler(registry, tick_seconds=config.scheduler.tick_seconds)

# ==================== CONTEXT & STATE ====================


@mcp.tool()
def get_context(user_id: str) -> str:
    """IMPORTANT: Call this at the start of EVERY session to load your identity and state.

    Args:
        user_id: User ID
    """
    return tools.get_context(user_id)


@mcp.tool()
def write_state(user_id: str, type: str, name: str, content: str) -> str:
    """Write or update a state file. State files are mutable documents that represent your current understanding.

    Args:
        user_id: User ID
        type: Type of state file (identity, today, topic, project, person)
        name: State file name (e.g. 'identity', 'today', 'nextjs')
        content: The content to write
    """
    return tools.write_state(user_id, type, name, content)


@mcp.tool()
def read_state(user_id: str, type: str, name: str) -> str:
    """Read a state file by type and name.

    Args:
        user_id: User ID
        type: Type of state file (identity, today, topic, project, person)
        name: State file name
    """
    return tools.read_state(user_id, type, name)


@mcp.tool()
def list_states(user_id: str, type: str) -> str:
    """List state files of one type.

    Args:
        user_id: User ID
        type: Type of state file (identity, today, topic, project, person)
    """
    return tools.list_states(user_id, type)


@mcp.tool()
def list_topics(user_id: str) -> str:
    """List all topics (your distilled knowledge).

    Args:
        user_id: User ID
    """
    return tools.list_topics(user_id)


# ==================== JOURNAL & SEARCH ====================


@mcp.tool()
def log_journal(user_id: str, topic: str, content: str, intent: Optional[str] = None) -> str:
    """Record an observation, decision, or thing to remember. Entries are searchable via semantic search.

    Args:
        user_id: User ID
        topic: Short topic/category for the entry
        content: The journal entry content
        intent: Why you're logging this
    """
    return tools.log_journal(user_id, topic, content, intent)


@mcp.tool()
def get_recent_journal(user_id: str, limit: int = 10) -> str:
    """Get the most recent journal entries, newest first.

    Args:
        user_id: User ID
        limit: Maximum entries to return (default: 10)
    """
    return tools.get_recent_journal(user_id, limit)


@mcp.tool()
def search_memory(user_id: str, query: str, limit: int = 5, type: str = 'all') -> str:
    """Search your memory (journal entries, topics, summaries, etc.) using semantic search.

    Args:
        user_id: User ID
        query: What to search for
        limit: Maximum results to return (default: 5)
        type: Filter by content type: all, journal, summary or a state type (default: all)
    """
    return tools.search_memory(user_id, query, limit, type)


@mcp.tool()
def save_conversation_summary(user_id: str,
                              summary: str,
                              key_decisions: Optional[List[str]] = None,
                              open_threads: Optional[List[str]] = None,
                              learned_patterns: Optional[List[str]] = None) -> str:
    """Save a summary of the current conversation for context recovery in future sessions.

    Args:
        user_id: User ID
        summary: Brief summary of what was discussed/accomplished
        key_decisions: Important decisions made
        open_threads: Topics to follow up on
        learned_patterns: New patterns learned about the user
    """
    return tools.save_conversation_summary(user_id, summary, key_decisions, open_threads, learned_patterns)


# ==================== CONVERSATIONS ====================


@mcp.tool()
def search_conversations(user_id: str,
                         query: str,
                         current_project_path: Optional[str] = None,
                         limit: int = 5,
                         project_only: bool = False) -> str:
    """Search past conversation exchanges, favoring recent ones and the current project.

    Args:
        user_id: User ID
        query: What you are looking for
        current_project_path: Absolute path of the current project, boosts its exchanges
        limit: Maximum results to return (default: 5)
        project_only: Only return exchanges from the current project
    """
    return tools.search_conversations(user_id, query, current_project_path, limit, project_only)


@mcp.tool()
def expand_conversation(user_id: str, session_path: str, message_uuid: str, window_size: int = 10) -> str:
    """Load the messages around an exchange found by search_conversations.

    Args:
        user_id: User ID
        session_path: Session log path from the search result
        message_uuid: Message id from the search result
        window_size: Number of messages to return (default: 10)
    """
    return tools.expand_conversation(user_id, session_path, message_uuid, window_size)


@mcp.tool()
def rebuild_conversation_index(user_id: str) -> str:
    """Re-scan all conversation logs and rebuild the conversation search index.

    Args:
        user_id: User ID
    """
    return tools.rebuild_conversation_index(user_id)


# ==================== SCHEDULES ====================


@mcp.tool()
def schedule_recurring(user_id: str,
                       id: str,
                       cron: str,
                       description: str,
                       task: str,
                       payload: Optional[str] = None,
                       model: Optional[str] = None) -> str:
    """Schedule a recurring task using a cron expression.

    Examples: '0 9 * * 1-5' (9am weekdays), '0 18 * * *' (6pm daily), '0 3 * * 0' (3am Sunday).
    Model tier: 'fast' (quick) or 'thinking' (deep reasoning). Defaults to thinking for
    reflect, cleanup and consolidate, fast otherwise.

    Args:
        user_id: User ID
        id: Unique identifier for this schedule
        cron: Cron expression (minute hour day month weekday), UTC
        description: What this schedule does
        task: Type of task to run (consolidate, reflect, cleanup, briefing, custom)
        payload: Custom instructions for the task
        model: Model tier override
    """
    return tools.schedule_recurring(user_id, id, cron, description, task, payload, model)


@mcp.tool()
def schedule_once(user_id: str,
                  id: str,
                  datetime: str,
                  description: str,
                  task: str,
                  payload: Optional[str] = None,
                  model: Optional[str] = None) -> str:
    """Schedule a one-time task at a specific date/time.

    Args:
        user_id: User ID
        id: Unique identifier for this schedule
        datetime: ISO 8601 datetime (e.g. '2025-01-23T10:00:00'), UTC when no offset is given
        description: What this task does
        task: Type of task to run (consolidate, reflect, cleanup, briefing, custom)
        payload: Custom instructions for the task
        model: Model tier override ('fast' or 'thinking')
    """
    return tools.schedule_once(user_id, id, datetime, description, task, payload, model)


@mcp.tool()
def list_schedules(user_id: str) -> str:
    """List all scheduled tasks.

    Args:
        user_id: User ID
    """
    return tools.list_schedules(user_id)


@mcp.tool()
def cancel_schedule(user_id: str, id: str) -> str:
    """Cancel a scheduled task by ID.

    Args:
        user_id: User ID
        id: ID of the schedule to cancel
    """
    return tools.cancel_schedule(user_id, id)


@mcp.tool()
def refine(user_id: str, task: str, focus: Optional[str] = None) -> str:
    """Ask a background agent to do deep processing on your memory. The agent has tool access and can make changes.

    Args:
        user_id: User ID
        task: What kind of refinement to do (consolidate, reflect, cleanup, research)
        focus: Specific area to focus on
    """
    return tools.refine(user_id, task, focus)


# ==================== EXTERNAL TOOLS ====================


@mcp.tool()
def list_external_mcps(user_id: str) -> str:
    """List all connected external MCP servers.

    Args:
        user_id: User ID
    """
    return tools.list_external_mcps(user_id)


@mcp.tool()
def list_external_tools(user_id: str, mcp_name: str) -> str:
    """List available tools from an external MCP server.

    Args:
        user_id: User ID
        mcp_name: Name of the connected MCP
    """
    return tools.list_external_tools(user_id, mcp_name)


@mcp.tool()
def call_external_tool(user_id: str, mcp_name: str, tool_name: str, args: Optional[Dict[str, Any]] = None) -> str:
    """Call a tool on an external MCP server.

    Args:
        user_id: User ID
        mcp_name: Name of the connected MCP
        tool_name: Name of the tool to call
        args: Arguments to pass to the tool
    """
    return tools.call_external_tool(user_id, mcp_name, tool_name, args)


@mcp.tool()
def get_health() -> str:
    """Report the health of the model, embedding, vector index and local store backends."""
    return format_health_status(get_health_status(registry))


if __name__ == '__main__':
    scheduler.start()
    try:
        transport = config.mcp.transport
        if transport == 'stdio':
            mcp.run(transport=transport)
        else:
            mcp.run(transport=transport, host=config.mcp.host, port=config.mcp.port)
    finally:
        scheduler.stop()
        registry.shutdown()
