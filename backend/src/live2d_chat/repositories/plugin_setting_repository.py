from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from ..models.plugin_setting import PluginSetting


log = logging.getLogger("live2d.repositories.plugin_setting")


class PluginSettingRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, group: str) -> PluginSetting | None:
        return (
            self.session.query(PluginSetting)
            .filter(PluginSetting.group == group)
            .one_or_none()
        )

    def get_value(self, group: str) -> dict[str, Any] | None:
        row = self.get(group)
        if row is None:
            return None
        return dict(row.value or {})

    def upsert(self, group: str, value: dict[str, Any]) -> PluginSetting:
        row = self.get(group)
        if row is None:
            row = PluginSetting(group=group, value=dict(value))
            self.session.add(row)
        else:
            # Reassign so SQLAlchemy sees the JSON column as dirty
            row.value = dict(value)
        self.session.flush()
        log.info("Settings group stored: %s (keys=%s)", group, sorted(value.keys()))
        return row
