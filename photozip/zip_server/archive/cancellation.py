"""
Per-request cancellation context.

One AbortSignal is created by the request pipeline and handed to the
archive stream, the aggregator and the walker. Every suspend point checks
it before issuing more work.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .errors import ArchiveAborted

logger = logging.getLogger(__name__)


class AbortSignal:
    """Cooperative, idempotent abort flag.

    Example:
        >>> signal = AbortSignal()
        >>> signal.add_callback(lambda reason: print("aborted:", reason))
        >>> signal.abort("client disconnected")
        >>> signal.raise_if_aborted()  # raises ArchiveAborted
    """

    def __init__(self) -> None:
        self._reason: str | None = None
        self._callbacks: list[Callable[[str], None]] = []

    @property
    def aborted(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def abort(self, reason: str = "aborted") -> bool:
        """Abort. Only the first call has an effect.

        Returns:
            True if this call performed the abort
        """
        if self._reason is not None:
            return False

        self._reason = reason
        for callback in self._callbacks:
            try:
                callback(reason)
            except Exception as e:
                logger.error(f"Abort callback failed: {e}", exc_info=True)
        return True

    def add_callback(self, callback: Callable[[str], None]) -> None:
        """Run ``callback(reason)`` on abort, immediately if already aborted."""
        if self._reason is not None:
            callback(self._reason)
            return
        self._callbacks.append(callback)

    def raise_if_aborted(self) -> None:
        """Raise ArchiveAborted if abort() was called."""
        if self._reason is not None:
            raise ArchiveAborted(self._reason)
