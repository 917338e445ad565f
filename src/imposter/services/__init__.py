"""Service modules for the session registry, real-time hub, CLI and web API."""

from . import cli, hub, registry, web_api

__all__ = ["cli", "hub", "registry", "web_api"]
