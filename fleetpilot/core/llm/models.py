"""Message types exchanged with the inference backend."""

from typing import Literal

from pydantic import BaseModel


class ConversationMessage(BaseModel):
    """One chat message sent as history to the inference backend."""

    role: Literal["system", "user", "assistant"]
    content: str
