import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings, assert_secure_configuration
from .core.database import init_database, session_scope
from .core.logging import configure_logging
from .api.routes.v1.health import router as health_router
from .api.routes.v1.chat import router as chat_router
from .api.routes.v1.auth import router as auth_router
from .api.routes.v1.settings import router as settings_router
from .repositories.plugin_setting_repository import PluginSettingRepository
from .repositories.user_repository import UserRepository
from .services.auth_service import AuthService
from .services.setting_service import SettingService


log = logging.getLogger("live2d.main")


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title="Live2D AI chat API", version="0.1.0")

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # The widget calls the chat route at a fixed path, outside API_PREFIX
    app.include_router(chat_router, tags=["chat"])
    app.include_router(health_router, prefix=f"{settings.api_prefix}/v1", tags=["health"])
    app.include_router(auth_router, prefix=f"{settings.api_prefix}/v1", tags=["auth"])
    app.include_router(settings_router, prefix=f"{settings.api_prefix}/v1", tags=["settings"])

    @app.on_event("startup")
    def _startup() -> None:
        assert_secure_configuration()
        init_database()
        with session_scope() as session:
            created = AuthService(UserRepository(session)).ensure_admin_user(
                settings.admin_username,
                settings.admin_password,
            )
            if created:
                log.info("Default admin user created: %s", settings.admin_username)
            SettingService(PluginSettingRepository(session)).ensure_defaults()

    return app


app = create_app()
