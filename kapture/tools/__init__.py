"""Offline tools: run replay and route maps."""

from .replay import load_fixes, replay_run
from .run_map import create_run_map

__all__ = ["create_run_map", "load_fixes", "replay_run"]
