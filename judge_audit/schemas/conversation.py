"""Conversation records read from the conversation source."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, field_validator


class Conversation(BaseModel):
    """One user turn plus the agent's answer to it."""

    model_config = ConfigDict(frozen=True)

    thread_id: str
    user_name: str | None = None
    agent_name: str | None = None
    user_query: str | None = None
    agent_response: str | None = None
    tool_used: str | None = None
    event_timestamp: datetime

    @field_validator("event_timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def is_eligible(self, min_response_chars: int = 50, min_query_chars: int = 10) -> bool:
        """True when both turns are long enough to be worth judging."""
        if self.agent_response is None or self.user_query is None:
            return False
        return (
            len(self.agent_response) > min_response_chars
            and len(self.user_query) > min_query_chars
        )
