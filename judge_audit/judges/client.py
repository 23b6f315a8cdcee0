"""Judge Client: one rubric-prompted LLM call per (conversation, judge kind).

The client is a plain request/response boundary. It neither retries nor
validates the answer: backend errors, timeouts and empty completions surface
as ``JudgeCallFailed``; any non-empty text is returned unchanged for the
Verdict Parser to deal with.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.runnables import Runnable

from judge_audit.config import PipelineSettings, get_pipeline_settings
from judge_audit.errors import JudgeCallFailed
from judge_audit.models import create_llm
from judge_audit.prompts.templates import JUDGE_SYSTEM, build_judge_prompt
from judge_audit.schemas.verdicts import JudgeKind

logger = structlog.get_logger(__name__)


def _content_text(response) -> str:  # noqa: ANN001
    content = getattr(response, "content", response)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        # Content blocks: keep text parts only
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return "" if content is None else str(content)


class JudgeClient:
    """Invokes the judge backend with the fixed rubric for each judge kind.

    Args:
        llm_factory: Builds the Runnable for a judge name. Defaults to
            ``create_llm``; tests pass a factory returning fake models.
        pipeline_settings: Used to report which model judged a conversation.
    """

    def __init__(
        self,
        llm_factory: Callable[[str], Runnable] | None = None,
        pipeline_settings: PipelineSettings | None = None,
    ) -> None:
        self._llm_factory = llm_factory or create_llm
        self._pipeline_settings = pipeline_settings or get_pipeline_settings()
        self._llms: dict[JudgeKind, Runnable] = {}

    def model_name(self, kind: JudgeKind) -> str:
        return self._pipeline_settings.get_model(kind.value)

    def _get_llm(self, kind: JudgeKind) -> Runnable:
        if kind not in self._llms:
            self._llms[kind] = self._llm_factory(kind.value)
        return self._llms[kind]

    async def judge(self, user_query: str, agent_response: str, kind: JudgeKind) -> str:
        """Return the raw completion of the ``kind`` judge for one conversation."""
        messages = [
            SystemMessage(content=JUDGE_SYSTEM),
            HumanMessage(content=build_judge_prompt(kind, user_query, agent_response)),
        ]

        try:
            response = await self._get_llm(kind).ainvoke(messages)
        except Exception as exc:
            raise JudgeCallFailed(kind.value, f"{type(exc).__name__}: {exc}") from exc

        text = _content_text(response)
        if not text.strip():
            raise JudgeCallFailed(kind.value, "empty completion")

        logger.debug("judge_call_completed", judge=kind.value, chars=len(text))
        return text
