"""Core package for the imposter party game server."""

from .core import catalog, errors, fsm, schemas, session, similarity
from .utils import rng, timers

__all__ = [
    "catalog",
    "errors",
    "fsm",
    "schemas",
    "session",
    "similarity",
    "rng",
    "timers",
]
