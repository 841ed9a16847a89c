"""Cooperative cancellation for coach card generation."""

import threading

from services.coaching.errors import GenerationCancelled


class CancellationToken:
    """
    Set by the caller, polled by the engine between pipeline stages.

    Once the cooldown write has started, cancelling has no effect.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, child_id: str) -> None:
        if self._event.is_set():
            raise GenerationCancelled(child_id)
