from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import String, DateTime, JSON, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, PLUGIN_SETTINGS_TABLE


class PluginSetting(Base):
    """One named settings group (e.g. ``aichat``) stored as a JSON document."""

    __tablename__ = PLUGIN_SETTINGS_TABLE

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    group: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    value: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
