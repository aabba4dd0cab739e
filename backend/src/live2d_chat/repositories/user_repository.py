from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.user import User


log = logging.getLogger("live2d.repositories.user")


class UserRepository:
    def __init__(self, session: Session):
        self.session = session

    def get_by_username(self, username: str) -> User | None:
        return (
            self.session.query(User)
            .filter(User.username == username)
            .one_or_none()
        )

    def create_user(
        self,
        username: str,
        password_hash: str,
        *,
        is_active: bool = True,
        is_admin: bool = False,
    ) -> User:
        if is_admin and username != settings.admin_username:
            raise ValueError("Admin flag reserved for configured admin username")
        user = User(
            username=username,
            password_hash=password_hash,
            is_active=is_active,
            is_admin=is_admin,
        )
        self.session.add(user)
        self.session.flush()
        log.info("User created: %s (admin=%s)", username, is_admin)
        return user
