"""
Memory Module

Session-scoped conversation memory.
"""

from lectern.memory.conversation import ConversationMemory
from lectern.memory.session import SessionMemoryStore

__all__ = [
    "ConversationMemory",
    "SessionMemoryStore",
]
