# history.py
# Conversation transcript for one execute() call.
#
# Append-only and order-preserving. The projection sent to the model is the
# first message (the task itself) plus the most recent limit-1 messages;
# the first message is never dropped.

import json
import logging
from typing import Any, Iterator, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from ai_executor.envelope import Envelope, ErrorEnvelope

logger = logging.getLogger(__name__)

MIN_LIMIT = 2


class ToolResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    tool_name: str = Field(..., alias="toolName")
    payload: Any = None


class UserMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user"] = "user"
    content: str | ErrorEnvelope


class AssistantMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["assistant"] = "assistant"
    content: Envelope


class ToolResponseMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    role: Literal["user"] = "user"
    tool_response: ToolResponse = Field(..., alias="toolResponse")


Message = Union[UserMessage, AssistantMessage, ToolResponseMessage]


class History:
    """Ordered sequence of Messages. Never shared between concurrent executions."""

    def __init__(self, messages: list[Message] | None = None) -> None:
        self._messages: list[Message] = list(messages or [])

    # ------------------------------------------------------------------
    # Appending
    # ------------------------------------------------------------------

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def add_user(self, content: str) -> None:
        self.append(UserMessage(content=content))

    def add_assistant(self, envelope: Any) -> None:
        self.append(AssistantMessage(content=envelope))

    def add_tool_response(self, tool_name: str, payload: Any) -> None:
        self.append(ToolResponseMessage(tool_response=ToolResponse(tool_name=tool_name, payload=payload)))

    def add_error(self, message: str) -> None:
        """Error-content message: the self-correction channel for the next model turn."""
        self.append(UserMessage(content=ErrorEnvelope(message=message)))

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def window(self, limit: int) -> list[Message]:
        if limit < MIN_LIMIT:
            logger.warning("History limit %d is below %d; using %d.", limit, MIN_LIMIT, MIN_LIMIT)
            limit = MIN_LIMIT
        if len(self._messages) <= limit:
            return list(self._messages)
        return [self._messages[0], *self._messages[-(limit - 1):]]

    def to_json(self, limit: int | None = None) -> str:
        messages = self._messages if limit is None else self.window(limit)
        return json.dumps(
            [message.model_dump(by_alias=True, mode="json") for message in messages],
            ensure_ascii=False,
        )

    # ------------------------------------------------------------------
    # Container protocol
    # ------------------------------------------------------------------

    @property
    def messages(self) -> list[Message]:
        """Shallow copy in append order."""
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))
