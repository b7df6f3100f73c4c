"""
API Routes for the guided intake chat.
"""

from . import chat_sessions

__all__ = ["chat_sessions"]
