"""
API Routes Package
"""

from lectern.api.routes import health, knowledge, query, sessions

__all__ = ["health", "knowledge", "query", "sessions"]
