"""Web interface for Agencyflow.

This module provides the FastAPI application that exposes workflow
execution, project phase and event log endpoints.
"""

from __future__ import annotations

from agencyflow.web.app import create_app
from agencyflow.web.middleware import RequestLoggingMiddleware

__all__ = [
    "create_app",
    "RequestLoggingMiddleware",
]
