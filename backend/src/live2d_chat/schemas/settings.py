from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator


AICHAT_GROUP = "aichat"


class AiChatBaseSetting(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_anonymous: bool = Field(False, alias="isAnonymous")
    # Validated even when absent so a missing prompt fails like a blank one
    system_message: str | None = Field(None, alias="systemMessage", validate_default=True)

    @field_validator("system_message", mode="before")
    @classmethod
    def _require_system_message(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("system message must not be null")
        return v


class AiChatConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_ai_chat: str | None = Field(None, alias="isAiChat")
    ai_chat_base_setting: AiChatBaseSetting = Field(..., alias="aiChatBaseSetting")


class SettingGroupResponse(BaseModel):
    group: str
    value: Dict[str, Any] = Field(default_factory=dict)
