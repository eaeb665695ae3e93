"""Configuration package."""

from deploylens.config.settings import Settings

settings = Settings()

__all__ = ["Settings", "settings"]
