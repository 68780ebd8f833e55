from __future__ import annotations

import asyncio

from ragcore.errors import AbortedError


class CancellationToken:
    """Cooperative cancellation flag checked at every suspension point."""

    def __init__(self) -> None:
        self._cancelled = False
        self._timer: asyncio.TimerHandle | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def cancel_after(self, seconds: float) -> None:
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(seconds, self.cancel)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise AbortedError()


def check_cancelled(token: CancellationToken | SharedCancellation | None) -> None:
    if token is not None:
        token.raise_if_cancelled()


class SharedCancellation:
    """Cancelled once every joined caller has cancelled.

    A caller that joins without a token can never cancel, so it keeps the
    shared work alive for everyone.
    """

    def __init__(self) -> None:
        self._tokens: list[CancellationToken] = []
        self._pinned = False

    def join(self, token: CancellationToken | None) -> None:
        if token is None:
            self._pinned = True
        else:
            self._tokens.append(token)

    @property
    def cancelled(self) -> bool:
        if self._pinned or not self._tokens:
            return False
        return all(token.cancelled for token in self._tokens)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise AbortedError()
