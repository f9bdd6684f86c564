"""Cooperative cancellation for long-running commands."""

import threading
from typing import Optional

from worktree_keeper.exceptions import OperationCanceledError


class CancelToken:
    """Thread-safe flag checked by operations before each mutation.

    The CLI sets it from its SIGINT handler; operations call
    ``raise_if_canceled`` at their safe points.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def canceled(self) -> bool:
        return self._event.is_set()

    def raise_if_canceled(self, step: str) -> None:
        """Raise OperationCanceledError if cancellation was requested.

        Args:
            step: Description of the step that is about to run
        """
        if self._event.is_set():
            raise OperationCanceledError(step)


def check_canceled(token: Optional[CancelToken], step: str) -> None:
    """Like ``CancelToken.raise_if_canceled`` but tolerates a missing token."""
    if token is not None:
        token.raise_if_canceled(step)
