"""Conversation sources: read-only collections the orchestrator samples from."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Protocol

import structlog
from pydantic import ValidationError

from judge_audit.errors import DatasetRetrievalFailed
from judge_audit.persistence.repository import select_eligible_conversations
from judge_audit.schemas.conversation import Conversation

logger = structlog.get_logger(__name__)


class ConversationSource(Protocol):
    def fetch_eligible(
        self,
        since: datetime,
        until: datetime,
        min_response_chars: int,
        min_query_chars: int,
    ) -> list[Conversation]: ...


class SqlConversationSource:
    """Reads the agent_conversations table of the evaluation database."""

    def __init__(self, conn) -> None:  # noqa: ANN001
        self._conn = conn

    def fetch_eligible(
        self,
        since: datetime,
        until: datetime,
        min_response_chars: int,
        min_query_chars: int,
    ) -> list[Conversation]:
        try:
            return select_eligible_conversations(
                self._conn, since, until, min_response_chars, min_query_chars
            )
        except Exception as exc:
            raise DatasetRetrievalFailed(f"conversation query failed: {exc}") from exc


class JsonlConversationSource:
    """Reads a JSON-lines export, one Conversation object per line."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def load(self) -> list[Conversation]:
        conversations = []
        try:
            with open(self._path, encoding="utf-8") as f:
                for line_no, line in enumerate(f, 1):
                    if not line.strip():
                        continue
                    try:
                        conversations.append(Conversation.model_validate(json.loads(line)))
                    except (ValueError, ValidationError) as exc:
                        raise DatasetRetrievalFailed(
                            f"{self._path}:{line_no}: invalid conversation record: {exc}"
                        ) from exc
        except OSError as exc:
            raise DatasetRetrievalFailed(f"cannot read {self._path}: {exc}") from exc
        return conversations

    def fetch_eligible(
        self,
        since: datetime,
        until: datetime,
        min_response_chars: int,
        min_query_chars: int,
    ) -> list[Conversation]:
        eligible = [
            c
            for c in self.load()
            if since <= c.event_timestamp <= until
            and c.is_eligible(min_response_chars, min_query_chars)
        ]
        logger.debug("jsonl_conversations_filtered", path=str(self._path), eligible=len(eligible))
        return eligible
