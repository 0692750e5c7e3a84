"""
Runtime-toggleable horizontal flip.
"""

import queue

from .frame import PixelBuffer, mirror


class FlipController:
    """
    Holds the current flip state.

    set()/get() are called from the loop thread. Writers on other threads
    (the HTTP surface) use submit(); their values are applied on the loop
    thread at the next drain(). Only the latest value matters.
    """

    def __init__(self, initial: bool = False):
        self._flipped = bool(initial)
        self._mailbox: "queue.SimpleQueue[bool]" = queue.SimpleQueue()

    def set(self, value: bool):
        value = bool(value)
        self._flipped = value
        print(f"[flip] Set flip mode to: {'on' if value else 'off'}")

    def get(self) -> bool:
        return self._flipped

    def submit(self, value: bool):
        """Queue a toggle from another thread."""
        self._mailbox.put(bool(value))

    def drain(self) -> int:
        """Take every queued toggle and apply the last one. Returns how many were queued."""
        pending = []
        while True:
            try:
                pending.append(self._mailbox.get_nowait())
            except queue.Empty:
                break
        if pending:
            self.set(pending[-1])
        return len(pending)

    def apply(self, buffer: PixelBuffer) -> PixelBuffer:
        if self._flipped:
            return mirror(buffer)
        return buffer
