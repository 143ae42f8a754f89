"""Tool-using research pass that runs before streaming.

An agno Agent decides whether the question needs the clock or a web search,
runs at most AGENT_MAX_TOOL_CALLS tools, and the executed calls are turned
into a plain-text context blob for the streaming prompt. The agent's own
answer is discarded; only tool observations are forwarded.

Failures never propagate. An exception from the run, or a tool call agno
flagged as failed, becomes ``ContextResult(error, True)`` so the turn can
still stream an answer that acknowledges the problem.
"""

import asyncio
import json
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog
from agno.agent import Agent
from agno.models.openai.chat import OpenAIChat

from streamchat.core.cancellation import CancellationToken
from streamchat.core.config import settings
from streamchat.core.metrics import orchestrator_stage_duration_seconds, tool_calls_total
from streamchat.tools.registry import get_tools

logger = structlog.get_logger(__name__)

_RESEARCH_SYSTEM = """\
You are a research assistant that gathers facts before another assistant answers the user.

Available tools:
- get_current_time: the current UTC date and time. ALWAYS use it for questions about
  the current time, today's date, or anything relative to "now".
- web_search: searches the web. Use it for companies, people, products, news and any
  fact that may have changed recently.

Rules:
- Call a tool only when the question needs it. Greetings and general knowledge need none.
- Never guess the time or date yourself.
- Keep your own reply to one short sentence; the tool results are what matter.
"""


@dataclass(frozen=True)
class ContextResult:
    blob: str
    tool_error: bool = False


def build_context_agent() -> Agent:
    """
    Build and return the context-gathering agent.

    stream=False since every tool observation must be collected before the
    streaming prompt is composed.
    """
    return Agent(
        name="ContextAgent",
        model=OpenAIChat(
            id=settings.LLM_MODEL,
            api_key=settings.OPENAI_API_KEY,
            temperature=settings.LLM_TEMPERATURE,
            timeout=settings.AGENT_TIMEOUT,
        ),
        system_message=_RESEARCH_SYSTEM,
        tools=get_tools(),
        tool_call_limit=settings.AGENT_MAX_TOOL_CALLS,
        enable_agentic_memory=False,
        stream=False,
        telemetry=False,
    )


def render_prompt(text: str, history: list[str]) -> str:
    """User message with earlier user utterances as conversational context."""
    if not history:
        return text
    previous = "\n".join(f"- {item}" for item in history)
    return f"Earlier messages from the user:\n{previous}\n\nCurrent message: {text}"


def _format_tool_input(args: object) -> str:
    if args is None:
        return ""
    if isinstance(args, dict):
        if not args:
            return ""
        if len(args) == 1:
            return str(next(iter(args.values())))
        return json.dumps(args, ensure_ascii=False, default=str)
    return str(args)


def build_context_blob(tool_calls: list) -> str:
    """Concatenate ``[tool] Input/Result`` sections in call order."""
    parts = []
    for call in tool_calls:
        name = getattr(call, "tool_name", None) or "tool"
        tool_input = _format_tool_input(getattr(call, "tool_args", None))
        result = getattr(call, "result", None)
        parts.append(f"[{name}] Input: {tool_input}\n[{name}] Result: {result or ''}\n\n")
    return "".join(parts)


class ContextGatherer:
    def __init__(self, agent_factory: Callable[[], Agent] = build_context_agent) -> None:
        self._agent_factory = agent_factory
        self._agent: Agent | None = None

    def _get_agent(self) -> Agent:
        if self._agent is None:
            self._agent = self._agent_factory()
        return self._agent

    async def gather(
        self, text: str, history: list[str], token: CancellationToken
    ) -> ContextResult:
        """Run the research pass. Returns an empty blob when no tool was needed
        or when the turn was cancelled while the agent was running."""
        if token.cancelled:
            return ContextResult("")

        start = time.monotonic()
        try:
            agent = self._get_agent()
            run_task = asyncio.ensure_future(agent.arun(render_prompt(text, history)))
            cancel_task = asyncio.ensure_future(token.wait())
            try:
                await asyncio.wait({run_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                cancel_task.cancel()

            if not run_task.done():
                # Cancelled mid-run; the HTTP call is abandoned, not awaited
                run_task.cancel()
                logger.info("context.cancelled")
                return ContextResult("")

            result = run_task.result()
            tool_calls = list(getattr(result, "tools", None) or [])
        except Exception as e:
            logger.exception("context.failed", query_preview=text[:80])
            return ContextResult(f"Error executing tools: {e}", tool_error=True)
        finally:
            orchestrator_stage_duration_seconds.labels(stage="gather").observe(
                time.monotonic() - start
            )

        for call in tool_calls:
            status = "error" if getattr(call, "tool_call_error", False) else "success"
            tool_calls_total.labels(tool=getattr(call, "tool_name", "tool"), status=status).inc()

        blob = build_context_blob(tool_calls)
        # agno catches tool exceptions itself and flags the call instead of raising
        failed = [c for c in tool_calls if getattr(c, "tool_call_error", False)]
        if failed:
            reasons = "; ".join(
                f"{getattr(c, 'tool_name', None) or 'tool'}: {getattr(c, 'result', None) or 'failed'}"
                for c in failed
            )
            logger.warning("context.tool_failed", failures=reasons)
            return ContextResult(f"Error executing tools: {reasons}\n\n{blob}", tool_error=True)

        logger.info(
            "context.success",
            tool_calls=[getattr(c, "tool_name", None) for c in tool_calls],
            blob_chars=len(blob),
        )
        return ContextResult(blob)
