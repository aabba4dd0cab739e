from typing import List, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


ChatRole = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    role: ChatRole
    content: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # The widget posts its history under "message"; "messages" is accepted too.
    message: List[ChatMessage] = Field(
        default_factory=list,
        validation_alias=AliasChoices("message", "messages"),
    )


class ChatResult(BaseModel):
    """One streamed unit: a completion fragment or a user-facing notice."""

    kind: Literal["fragment", "notice"]
    status: int = 200
    text: str

    @classmethod
    def fragment(cls, text: str) -> "ChatResult":
        return cls(kind="fragment", text=text)

    @classmethod
    def notice(cls, text: str) -> "ChatResult":
        return cls(kind="notice", text=text)
