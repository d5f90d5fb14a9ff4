from __future__ import annotations

from typing import Any, Dict, Optional


class StoreError(Exception):
    """Raised when the key-value store fails or holds unexpected data.

    The original client exception, if any, is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.detail = detail or {}


__all__ = ["StoreError"]
