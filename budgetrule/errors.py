from __future__ import annotations


class ValidationError(ValueError):
    """Raised when a transaction draft or budget configuration is malformed."""


class SuggestionUnavailable(RuntimeError):
    """Raised when the category suggestion service fails or times out."""


class PersistenceError(RuntimeError):
    """Raised when the transaction store cannot complete a read or write."""
