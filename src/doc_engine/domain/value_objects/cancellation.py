"""Cooperative cancellation for scans and pipelines."""

from __future__ import annotations

import threading

from doc_engine.domain.errors import OperationCancelledError


class CancellationToken:
    """Flag shared between a caller and a running operation.

    The engine checks the token between record evaluations; cancelling
    never interrupts a mutation.

    Example:
        token = CancellationToken()
        cursor = store.find({}, cancel_token=token)
        # from another thread
        token.cancel("client went away")
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = "operation cancelled"

    def cancel(self, reason: str | None = None) -> None:
        if reason:
            self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError once cancel() has been called."""
        if self._event.is_set():
            raise OperationCancelledError(self._reason)
