"""Cooperative cancellation shared by the pipeline phases."""
from __future__ import annotations

from docrag.errors import PipelineCancelledError


class CancellationToken:
    """Flag checked between awaited units of work.

    Cancelling never interrupts an in-flight remote call; the next unit of
    work simply does not start.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str | None = None) -> None:
        self._cancelled = True
        self.reason = reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise PipelineCancelledError(self.reason or "Pipeline run was cancelled")


__all__ = ["CancellationToken"]
