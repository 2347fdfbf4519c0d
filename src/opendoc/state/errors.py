"""State management errors."""


class StateError(Exception):
    """Raised when the translation state file cannot be read or written."""
