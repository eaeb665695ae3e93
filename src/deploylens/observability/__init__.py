"""Monitoring interfaces and logging setup."""

from deploylens.observability.base import MonitoringSource
from deploylens.observability.logging import configure_logging

__all__ = ["MonitoringSource", "configure_logging"]
