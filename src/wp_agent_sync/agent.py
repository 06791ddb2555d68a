# agent.py
# WordPress content agent.
#
# The orchestrator owns the loop; the model only answers. Each model turn is
# one step: it either finishes with text or asks for tool calls, which are
# executed through the ToolAdapter and fed back as tool results. The loop
# stops at the first finishing turn or after MAX_AGENT_STEPS, whichever
# comes first.
#
# Every run ends by handing its step trace to the ChangeTracker, including
# runs that die on a model error part-way through.

import json
import logging
from collections.abc import Callable, Iterator
from typing import Any

import anthropic
import openai
from pydantic import BaseModel, Field

from wp_agent_sync.config import (
    MAX_AGENT_STEPS,
    SANDBOX,
    AgentSettings,
    environment_label,
    load_agent_settings,
)
from wp_agent_sync.errors import ModelUnavailableError
from wp_agent_sync.models import AgentRunResult, AgentStep, ToolCall, ToolDescriptor, ToolResult
from wp_agent_sync.tools import ToolAdapter
from wp_agent_sync.tracker import ChangeTracker

logger = logging.getLogger(__name__)

MAX_TOKENS = 4096


def build_system_prompt(environment: str) -> str:
    label = environment_label(environment)
    return f"""\
You are a WordPress content management assistant working with the {label} environment. You can help users:
- List, read, create, update, and delete WordPress posts
- Manage post status (draft, pending, publish, private)
- Work with post content in HTML format

Guidelines:
- Always confirm destructive actions (delete, publish) before executing them
- When listing posts, present them in a clear, readable format
- For content creation, be helpful but let the user define the actual content
- Explain what you're doing and show the results clearly
- IMPORTANT: You are working with the {label.upper()} environment\
"""


# ---------------------------------------------------------------------------
# Model providers
# ---------------------------------------------------------------------------


class ModelTurn(BaseModel):
    text: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    finish_reason: str = ""


def _tool_content(output: Any) -> str:
    return output if isinstance(output, str) else json.dumps(output, default=str)


def _parse_arguments(raw: str | None) -> Any:
    # Malformed JSON is passed through as a string; validation rejects it later.
    try:
        return json.loads(raw or "{}")
    except json.JSONDecodeError:
        return raw


class OpenAIChatModel:
    """Chat Completions function calling. Works with any OpenAI-compatible base_url."""

    def __init__(self, settings: AgentSettings, client: openai.OpenAI | None = None) -> None:
        self._model = settings.model
        self._client = client or openai.OpenAI(api_key=settings.api_key, base_url=settings.base_url)

    def start(self, prompt: str) -> list[dict]:
        return [{"role": "user", "content": prompt}]

    def complete(self, system: str, messages: list[dict], tools: list[ToolDescriptor]) -> ModelTurn:
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "system", "content": system}, *messages],
                tools=[
                    {
                        "type": "function",
                        "function": {
                            "name": t.name,
                            "description": t.description,
                            "parameters": t.input_schema,
                        },
                    }
                    for t in tools
                ],
            )
        except openai.APIError as exc:
            raise ModelUnavailableError(f"OpenAI request failed: {exc}") from exc

        choice = response.choices[0]
        message = choice.message
        assistant: dict = {"role": "assistant", "content": message.content}
        calls: list[ToolCall] = []

        if message.tool_calls:
            assistant["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.function.name, "arguments": tc.function.arguments},
                }
                for tc in message.tool_calls
            ]
            calls = [
                ToolCall(
                    call_id=tc.id,
                    name=tc.function.name,
                    input=_parse_arguments(tc.function.arguments),
                )
                for tc in message.tool_calls
            ]

        messages.append(assistant)
        return ModelTurn(
            text=message.content or "", tool_calls=calls, finish_reason=choice.finish_reason or ""
        )

    def add_tool_results(self, messages: list[dict], results: list[ToolResult]) -> None:
        for result in results:
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": result.call_id,
                    "content": _tool_content(result.output),
                }
            )


class AnthropicChatModel:
    """Messages API tool use."""

    def __init__(self, settings: AgentSettings, client: anthropic.Anthropic | None = None) -> None:
        self._model = settings.model
        self._client = client or anthropic.Anthropic(api_key=settings.api_key)

    def start(self, prompt: str) -> list[dict]:
        return [{"role": "user", "content": prompt}]

    def complete(self, system: str, messages: list[dict], tools: list[ToolDescriptor]) -> ModelTurn:
        try:
            response = self._client.messages.create(
                model=self._model,
                max_tokens=MAX_TOKENS,
                system=system,
                tools=[
                    {"name": t.name, "description": t.description, "input_schema": t.input_schema}
                    for t in tools
                ],
                messages=messages,
            )
        except anthropic.APIError as exc:
            raise ModelUnavailableError(f"Anthropic request failed: {exc}") from exc

        blocks: list[dict] = []
        texts: list[str] = []
        calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                blocks.append({"type": "text", "text": block.text})
                texts.append(block.text)
            elif block.type == "tool_use":
                blocks.append(
                    {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
                )
                calls.append(ToolCall(call_id=block.id, name=block.name, input=block.input))

        messages.append({"role": "assistant", "content": blocks})
        return ModelTurn(
            text="".join(texts), tool_calls=calls, finish_reason=response.stop_reason or ""
        )

    def add_tool_results(self, messages: list[dict], results: list[ToolResult]) -> None:
        messages.append(
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": result.call_id,
                        "content": _tool_content(result.output),
                        "is_error": result.is_error,
                    }
                    for result in results
                ],
            }
        )


ChatModel = OpenAIChatModel | AnthropicChatModel


def default_chat_model() -> ChatModel:
    """Build the provider selected by AI_PROVIDER. Raises ConfigurationError without a key."""
    settings = load_agent_settings()
    if settings.provider == "openai":
        return OpenAIChatModel(settings)
    return AnthropicChatModel(settings)


# ---------------------------------------------------------------------------
# AgentOrchestrator
# ---------------------------------------------------------------------------


class AgentOrchestrator:
    """
    Drives one model through a bounded tool-use loop against one environment.

    Example:
        agent = AgentOrchestrator(adapter, tracker)
        result = agent.run("List the five most recent posts.", "sandbox")
    """

    def __init__(
        self,
        adapter: ToolAdapter,
        tracker: ChangeTracker,
        model_factory: Callable[[], ChatModel] = default_chat_model,
    ) -> None:
        self._adapter = adapter
        self._tracker = tracker
        self._model_factory = model_factory

    def run(self, prompt: str, environment: str = SANDBOX) -> AgentRunResult:
        result = None
        for kind, payload in self.stream(prompt, environment):
            if kind == "finish":
                result = payload
        return result

    def stream(self, prompt: str, environment: str = SANDBOX) -> Iterator[tuple[str, Any]]:
        """
        Run the loop, yielding (kind, payload) events as steps complete.

        kinds: text, tool-call, tool-result, tool-error, finish. The finish
        payload is the AgentRunResult.
        """
        model = self._model_factory()
        system = build_system_prompt(environment)
        tools = self._adapter.descriptors(environment)
        messages = model.start(prompt)
        steps: list[AgentStep] = []
        finish_reason = "max-steps"

        logger.info("Agent run on %s: %s", environment, prompt)
        try:
            for index in range(MAX_AGENT_STEPS):
                turn = model.complete(system, messages, tools)
                step = AgentStep(
                    index=index,
                    text=turn.text,
                    tool_calls=turn.tool_calls,
                    finish_reason=turn.finish_reason,
                )
                steps.append(step)

                if turn.text:
                    yield "text", {"step": index, "text": turn.text}

                if not turn.tool_calls:
                    finish_reason = turn.finish_reason or "stop"
                    break

                for call in turn.tool_calls:
                    yield "tool-call", {"step": index, "name": call.name, "input": call.input}
                    result = self._execute(environment, call)
                    step.tool_results.append(result)
                    yield (
                        "tool-error" if result.is_error else "tool-result",
                        {"step": index, "name": call.name, "output": result.output},
                    )

                model.add_tool_results(messages, step.tool_results)
        finally:
            self._tracker.record_run(steps)

        text = steps[-1].text if steps else ""
        yield "finish", AgentRunResult(
            environment=environment, text=text, finish_reason=finish_reason, steps=steps
        )

    def _execute(self, environment: str, call: ToolCall) -> ToolResult:
        try:
            output = self._adapter.execute(environment, call.name, call.input)
        except Exception as exc:
            # Surfaced to the model as a tool error; the model decides what next.
            logger.warning("Tool %s failed on %s: %s", call.name, environment, exc)
            return ToolResult(
                call_id=call.call_id, name=call.name, output={"error": str(exc)}, is_error=True
            )
        return ToolResult(call_id=call.call_id, name=call.name, output=output)
