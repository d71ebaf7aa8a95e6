"""Multiplayer league ratings with replayable history and undo/redo."""

__version__ = "0.1.0"
