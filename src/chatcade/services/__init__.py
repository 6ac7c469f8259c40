"""Service modules: engine facade, CLI and web API."""

from . import cli, console, engine, web_api

__all__ = ["cli", "console", "engine", "web_api"]
