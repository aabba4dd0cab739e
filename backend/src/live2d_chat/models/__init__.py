from .user import User
from .plugin_setting import PluginSetting

__all__ = [
    "User",
    "PluginSetting",
]
