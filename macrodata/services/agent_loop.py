"""
Bounded tool-calling loop over the Bedrock Converse API.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class AgentLoopError(Exception):
    """Custom exception for agent loop generation errors."""
    pass


@dataclass
class AgentTool:
    """A tool the model may call: a JSON schema and a handler returning text."""
    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: Callable[..., str]

    def to_spec(self) -> Dict[str, Any]:
        return {'name': self.name, 'description': self.description, 'inputSchema': {'json': self.input_schema}}


@dataclass
class AgentResult:
    text: str
    steps: int
    hit_step_limit: bool


class AgentLoop:
    """Runs generate -> call tools -> feed results back, for at most ``max_steps`` generations."""

    def __init__(self, llm: BedrockLLM, tools: List[AgentTool], max_steps: int = 10):
        if max_steps <= 0:
            raise ValueError('max_steps must be positive')
        self.llm = llm
        self.tools = {tool.name: tool for tool in tools}
        self.max_steps = max_steps

    def run(self, system_prompt: str, prompt: str, model_tier: str = 'fast') -> AgentResult:
        """
        Drive the conversation until the model stops asking for tools or the step cap is hit.

        Args:
            system_prompt: System prompt for every step
            prompt: Initial user message
            model_tier: 'fast' or 'thinking'

        Returns:
            AgentResult with the text produced so far

        Raises:
            AgentLoopError: If a generation call fails
        """
        messages = [{'role': 'user', 'content': [{'text': prompt}]}]
        tool_specs = [tool.to_spec() for tool in self.tools.values()]
        texts = []

        for step in range(1, self.max_steps + 1):
            try:
                response = self.llm.converse(messages=messages,
                                             system_prompt=system_prompt,
                                             model_tier=model_tier,
                                             tool_specs=tool_specs or None)
            except BedrockLLMError as e:
                logger.error(f'Generation failed at step {step}: {e}')
                raise AgentLoopError(f'Generation failed at step {step}: {e}')

            message = response['message']
            content = message.get('content', [])
            messages.append({'role': 'assistant', 'content': content})

            text = '\n'.join(block['text'] for block in content if block.get('text')).strip()
            if text:
                texts.append(text)

            tool_uses = [block['toolUse'] for block in content if 'toolUse' in block]
            if response['stop_reason'] != 'tool_use' or not tool_uses:
                logger.debug(f'Agent loop finished in {step} steps')
                return AgentResult(text='\n\n'.join(texts), steps=step, hit_step_limit=False)

            messages.append({'role': 'user', 'content': [self._call_tool(tool_use) for tool_use in tool_uses]})

        logger.warning(f'Agent loop stopped at the {self.max_steps} step limit')
        return AgentResult(text='\n\n'.join(texts), steps=self.max_steps, hit_step_limit=True)

    def _call_tool(self, tool_use: Dict[str, Any]) -> Dict[str, Any]:
        name = tool_use.get('name', '')
        tool_use_id = tool_use.get('toolUseId', '')
        tool = self.tools.get(name)

        if tool is None:
            return self._tool_result(tool_use_id, f'Unknown tool: {name}', 'error')

        arguments = tool_use.get('input') or {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError:
                return self._tool_result(tool_use_id, f'Invalid arguments for {name}', 'error')

        try:
            output = tool.handler(**arguments)
            logger.debug(f'Tool {name} succeeded')
            return self._tool_result(tool_use_id, output, 'success')
        except Exception as e:
            logger.warning(f'Tool {name} failed: {e}')
            return self._tool_result(tool_use_id, f'Error: {e}', 'error')

    @staticmethod
    def _tool_result(tool_use_id: str, text: Optional[str], status: str) -> Dict[str, Any]:
        return {'toolResult': {'toolUseId': tool_use_id, 'content': [{'text': text or ''}], 'status': status}}
