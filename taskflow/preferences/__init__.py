from taskflow.preferences.service import (
    SessionDurations,
    SettingsProvider,
    StaticSettingsProvider,
    StoredSettingsProvider,
    get_day_settings,
    update_day_settings,
)

__all__ = [
    "SessionDurations",
    "SettingsProvider",
    "StaticSettingsProvider",
    "StoredSettingsProvider",
    "get_day_settings",
    "update_day_settings",
]
