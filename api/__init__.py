"""
API Module for the guided intake chat.

FastAPI application with routes for:
- Opening and resuming guided chat sessions
- Submitting answers step by step
- Session state and transcript lookup
"""

from .main import create_app, app

__all__ = ["create_app", "app"]
