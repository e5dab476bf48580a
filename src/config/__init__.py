from .loader import ConfigError, DatabaseConfig, ImportConfig, SyncSettings, load_config

__all__ = [
    "ConfigError",
    "DatabaseConfig",
    "ImportConfig",
    "SyncSettings",
    "load_config",
]
