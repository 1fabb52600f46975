from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any

from deepagents import create_deep_agent
from deepagents.backends import FilesystemBackend

from .llm import get_chat_model
from .settings import RuntimeSettings
from .state_store import LoopStateStore
from .tools import build_loop_tools

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are Ralph, an autonomous developer working through a task one iteration at a time.

Every iteration starts with a fresh context: you only know what the prompt and the project files tell you.
Treat the files under /.ralph/ as your memory.

## Your Workspace (/.ralph/)
- task.md, feedback.md: READ ONLY, written by the harness
- progress.md: your log; the harness appends a summary of your final reply every iteration
- summary.md: REQUIRED before completion. What you built and key decisions (use write_summary)
- status.txt: the loop status (use set_loop_status)
- build-errors.md: written by the quality gates when the build fails

## Rules
- Take ONE concrete step per iteration and verify it before reporting progress.
- All colors come from the theme: semantic classes (text-primary, bg-accent, border-muted) and
  CSS variables in src/index.css. No Tailwind palette shades, oklch()/hsl()/rgb() or #hex values in components.
- Do not put @tailwind directives in src/index.css.

## Completion + Quality Gates
Write .ralph/summary.md first, then call set_loop_status("complete").
Quality gates then check that src/App.tsx exists with real content, src/index.css defines the full
theme (including a .dark block), no hardcoded colors remain, the project builds and the summary exists.
If gates fail, the failures appear in .ralph/feedback.md on the next iteration. Fix them and mark complete again.
If you need a human decision, call set_loop_status("waiting") and explain why in your reply.

End every iteration with a short plain-text summary of what you did.
"""


def _content_to_text(content: Any) -> str:
    """Flatten heterogeneous message content (strings, content blocks, nested dicts) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks: list[str] = []
        for item in content:
            if isinstance(item, str):
                chunks.append(item)
            elif isinstance(item, dict):
                text_value = item.get("text")
                if isinstance(text_value, str):
                    chunks.append(text_value)
                elif item.get("content") is not None:
                    chunks.append(_content_to_text(item["content"]))
                elif item.get("type") in {"tool_use", "tool_call"}:
                    continue
                else:
                    chunks.append(json.dumps(item, sort_keys=True))
            else:
                chunks.append(str(item))
        return "\n".join(chunk for chunk in chunks if chunk.strip())
    if isinstance(content, dict):
        if "content" in content:
            return _content_to_text(content["content"])
        return json.dumps(content, sort_keys=True)
    return str(content)


def extract_agent_text(response: Any) -> str:
    """Extract the final text of an agent response.

    Accepts the ``{"messages": [...]}`` state returned by a deep agent, an
    ``{"output": ...}`` mapping, a message object with ``content`` or a
    plain string.
    """
    if isinstance(response, str):
        return response
    if isinstance(response, dict):
        messages = response.get("messages")
        if isinstance(messages, list) and messages:
            return extract_agent_text(messages[-1])
        if "output" in response:
            return extract_agent_text(response["output"])
        if "content" in response:
            return _content_to_text(response["content"])
    content = getattr(response, "content", None)
    if content is not None:
        return _content_to_text(content)
    return _content_to_text(response)


class DeepAgentCaller:
    """Agent-call collaborator: one deep-agent run per iteration prompt.

    The agent works directly on the project tree through a filesystem
    backend rooted at the project, so status changes it makes during the
    call are visible to the controller as soon as the call returns.  No
    checkpointer is attached and every call gets a new thread id, so no
    conversation history leaks from one iteration into the next.

    Exceptions from the model or the agent graph propagate unchanged.
    """

    def __init__(self, project_root: Path, settings: RuntimeSettings, *, model: Any | None = None) -> None:
        self.project_root = Path(project_root)
        self.settings = settings
        self._model = model
        self._agent: Any | None = None

    def _get_agent(self) -> Any:
        if self._agent is None:
            model = self._model
            if model is None:
                model = get_chat_model(self.settings, project_root=self.project_root)
            backend = FilesystemBackend(root_dir=self.project_root, virtual_mode=True)
            self._agent = create_deep_agent(
                model=model,
                tools=build_loop_tools(LoopStateStore(self.project_root)),
                backend=backend,
                system_prompt=SYSTEM_PROMPT,
                name="ralph",
            )
        return self._agent

    def __call__(self, prompt: str) -> str:
        agent = self._get_agent()
        thread_id = f"ralph-{uuid.uuid4().hex[:8]}"
        logger.debug("Invoking deep agent (thread %s)", thread_id)
        response = agent.invoke(
            {"messages": [{"role": "user", "content": prompt}]},
            config={"configurable": {"thread_id": thread_id}},
        )
        return extract_agent_text(response).strip()
