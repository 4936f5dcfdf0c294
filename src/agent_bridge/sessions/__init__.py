"""Conversation session tracking."""

from agent_bridge.sessions.registry import SessionRegistry

__all__ = ["SessionRegistry"]
