"""Incremental suffix tracking over cumulative backend text."""

from __future__ import annotations


class DeltaTracker:
    """Cursor over cumulative text that yields only the newly appended suffix.

    ``emitted_length`` only ever grows. ``last_cumulative_text`` always holds
    the most recent cumulative value, even when it shrank.
    """

    def __init__(self, initial_text: str = "") -> None:
        self.emitted_length = len(initial_text)
        self.last_cumulative_text = initial_text

    def compute_delta(self, cumulative_text: str) -> tuple[str, bool]:
        self.last_cumulative_text = cumulative_text
        if len(cumulative_text) <= self.emitted_length:
            return "", False
        delta = cumulative_text[self.emitted_length:]
        self.emitted_length = len(cumulative_text)
        return delta, True

    def merge_terminal(self, text: str) -> str:
        """Append ``text`` as terminal content and return what is left to emit.

        After a shrinking revision the whole of ``text`` is returned and the
        cursor moves to the end of the merged text.
        """
        base = self.last_cumulative_text
        separator = "\n\n" if base else ""
        merged = f"{base}{separator}{text}"
        if len(base) < self.emitted_length:
            self.last_cumulative_text = merged
            self.emitted_length = max(self.emitted_length, len(merged))
            return f"{separator}{text}"
        delta, advanced = self.compute_delta(merged)
        return delta if advanced else text
