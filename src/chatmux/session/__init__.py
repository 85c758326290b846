"""Chat sessions and their state."""

from chatmux.session.chat import ChatSession, open_session
from chatmux.session.state import SessionState

__all__ = ["ChatSession", "SessionState", "open_session"]
