"""Mock upstream server for development and testing."""

from .app import create_app, create_mock_app

__all__ = ["create_app", "create_mock_app"]
