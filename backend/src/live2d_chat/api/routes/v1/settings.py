from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ....core.database import get_session, transactional
from ....core.security import get_current_user, user_is_admin
from ....models.user import User
from ....repositories.plugin_setting_repository import PluginSettingRepository
from ....schemas.settings import SettingGroupResponse
from ....services.setting_service import InvalidSettingError, SettingService


log = logging.getLogger("live2d.api.settings")

router = APIRouter(prefix="/settings")


def _require_admin(user: User) -> None:
    if not user_is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")


@router.get("/{group}", response_model=SettingGroupResponse)
def read_setting_group(
    group: str,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> SettingGroupResponse:
    _require_admin(current_user)
    value = SettingService(PluginSettingRepository(session)).get(group)
    if value is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Settings group not found")
    return SettingGroupResponse(group=group, value=value)


@router.put("/{group}", response_model=SettingGroupResponse)
def replace_setting_group(
    group: str,
    value: Dict[str, Any] = Body(...),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> SettingGroupResponse:
    _require_admin(current_user)
    service = SettingService(PluginSettingRepository(session))
    try:
        with transactional(session):
            stored = service.update(group, value)
    except InvalidSettingError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    log.info("Settings group replaced by %s: %s", current_user.username, group)
    return SettingGroupResponse(group=group, value=stored)
