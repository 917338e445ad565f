"""Core game logic and data structures."""

from . import catalog, errors, fsm, schemas, session, similarity

__all__ = ["catalog", "errors", "fsm", "schemas", "session", "similarity"]
