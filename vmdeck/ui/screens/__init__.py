"""Screen components for vmdeck."""

from vmdeck.ui.screens.main import MainScreen

__all__ = ["MainScreen"]
