from .settings import BASE_DIR, Config, config

__all__ = ["BASE_DIR", "Config", "config"]
