"""Context-window limit recovery for AI coding-agent sessions."""

__version__ = "0.1.0"
