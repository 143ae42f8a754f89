import asyncio


class CancellationToken:
    """One-shot cancellation signal shared by every stage of a single turn.

    Signalling is idempotent and cannot be undone. Stages poll ``cancelled``
    after each await; ``wait()`` lets watchers block until it fires.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
