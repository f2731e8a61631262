"""Shared formatting helpers for recovery notices."""


def format_bytes(size: int) -> str:
    """Format a character/byte count the way toast messages show it."""
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / (1024 * 1024):.1f}MB"
