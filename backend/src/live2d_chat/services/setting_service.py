from __future__ import annotations

import logging
from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from ..core.config import settings
from ..repositories.plugin_setting_repository import PluginSettingRepository
from ..schemas.settings import AICHAT_GROUP, AiChatConfig


log = logging.getLogger("live2d.services.settings")

M = TypeVar("M", bound=BaseModel)

# Groups whose stored documents must match a known shape
SETTING_SHAPES: Dict[str, Type[BaseModel]] = {
    AICHAT_GROUP: AiChatConfig,
}


class InvalidSettingError(ValueError):
    """Raised when a settings group is missing or does not match its shape."""
    pass


def _validation_message(exc: ValidationError) -> str:
    """Return the message of the first validation failure.

    Failures raised by our own validators keep their text verbatim
    (e.g. ``system message must not be null``).
    """
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    cause = (first.get("ctx") or {}).get("error")
    if isinstance(cause, Exception):
        return str(cause)
    loc = ".".join(str(part) for part in first.get("loc", ()))
    msg = first.get("msg") or "invalid value"
    return f"{loc}: {msg}" if loc else msg


def parse_setting(group: str, value: Dict[str, Any] | None, model: Type[M]) -> M:
    if value is None:
        raise InvalidSettingError(f"setting group '{group}' is not configured")
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        raise InvalidSettingError(_validation_message(exc)) from exc


class SettingService:
    def __init__(self, repo: PluginSettingRepository):
        self.repo = repo

    def get(self, group: str) -> Dict[str, Any] | None:
        return self.repo.get_value(group)

    def update(self, group: str, value: Dict[str, Any]) -> Dict[str, Any]:
        shape = SETTING_SHAPES.get(group)
        if shape is not None:
            parse_setting(group, value, shape)
        row = self.repo.upsert(group, value)
        return dict(row.value)

    def ensure_defaults(self) -> bool:
        """Seed the ``aichat`` group from the environment when nothing is stored."""
        if self.repo.get(AICHAT_GROUP) is not None:
            return False
        self.repo.upsert(
            AICHAT_GROUP,
            {
                "aiChatBaseSetting": {
                    "isAnonymous": settings.aichat_anonymous,
                    "systemMessage": settings.aichat_system_message,
                },
            },
        )
        log.info("Default '%s' settings seeded (anonymous=%s)", AICHAT_GROUP, settings.aichat_anonymous)
        return True


class SettingFetcher:
    """Relit le groupe de paramètres à chaque appel, sans cache entre requêtes."""

    def __init__(self, service: SettingService):
        self.service = service

    async def fetch(self, group: str, model: Type[M]) -> M:
        value = await run_in_threadpool(self.service.get, group)
        return parse_setting(group, value, model)
