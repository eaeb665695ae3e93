"""Source-control connector abstraction layer."""

from deploylens.connectors.base import SourceControlConnector

__all__ = ["SourceControlConnector"]
