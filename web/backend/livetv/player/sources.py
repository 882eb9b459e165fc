"""
Source selection for channels with several candidate stream URLs.
"""
from typing import Sequence

from livetv.errors import SourceExhausted


class SourceSelector:
    """Ordered candidate URLs and a cursor over them. Never wraps around."""

    def __init__(self, sources: Sequence[str]):
        if not sources:
            raise ValueError("A channel needs at least one stream URL")
        self._sources = list(sources)
        self._index = 0

    def __len__(self) -> int:
        return len(self._sources)

    @property
    def sources(self) -> list[str]:
        return list(self._sources)

    @property
    def index(self) -> int:
        return self._index

    @property
    def exhausted(self) -> bool:
        return self._index >= len(self._sources)

    def current(self) -> str:
        if self.exhausted:
            raise SourceExhausted("All stream sources failed", source_index=self._index)
        return self._sources[self._index]

    def advance(self) -> str:
        """Move to the next source, or raise ``SourceExhausted`` past the last."""
        self._index = min(self._index + 1, len(self._sources))
        return self.current()

    def select(self, index: int) -> str:
        """Jump to a source chosen by the user."""
        if not 0 <= index < len(self._sources):
            raise IndexError(f"No stream source {index}")
        self._index = index
        return self.current()

    def reset(self) -> str:
        self._index = 0
        return self.current()
