"""Checkpoint progress tracking and checkpoint range utilities."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Iterator

log = logging.getLogger(__name__)


class CheckpointTracker:
    """Tracks the current and target checkpoint of a sync.

    ``current`` only moves forward through :meth:`advance`; the only way back
    is an explicit :meth:`reset_to` when restoring persisted state.
    """

    def __init__(self, start: int | None = None) -> None:
        self._current: int | None = start
        self._target: int | None = None

    @property
    def current(self) -> int | None:
        return self._current

    @property
    def target(self) -> int | None:
        return self._target

    def advance(self) -> int:
        """Move to the next checkpoint. Starts at 0 from an unset state."""
        self._current = 0 if self._current is None else self._current + 1
        return self._current

    def set_target(self, target: int) -> None:
        """Set or raise the target. A lower target than the known one is ignored."""
        if target < 0:
            raise ValueError(f"target checkpoint must be >= 0, got {target}")
        if self._target is not None and target < self._target:
            log.warning(
                "Ignoring stale target checkpoint %d (already targeting %d)",
                target, self._target,
            )
            return
        self._target = target

    def is_caught_up(self) -> bool:
        if self._current is None or self._target is None:
            return False
        return self._current >= self._target

    def remaining(self) -> int | None:
        if self._current is None or self._target is None:
            return None
        return max(self._target - self._current, 0)

    def reset_to(self, checkpoint: int) -> None:
        """Override ``current``. Only for restoring a known-consistent state."""
        if checkpoint < 0:
            raise ValueError(f"checkpoint must be >= 0, got {checkpoint}")
        log.info("Checkpoint tracker reset to %d", checkpoint)
        self._current = checkpoint

    def __repr__(self) -> str:
        return f"CheckpointTracker(current={self._current}, target={self._target})"


@dataclass(frozen=True)
class CheckpointRange:
    """Inclusive ``[start, end]`` range of checkpoint sequence numbers."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError(f"start checkpoint must be >= 0, got {self.start}")
        if self.start > self.end:
            raise ValueError(
                f"start checkpoint {self.start} is greater than end checkpoint {self.end}"
            )

    def __len__(self) -> int:
        return self.end - self.start + 1

    def __contains__(self, checkpoint: object) -> bool:
        return isinstance(checkpoint, int) and self.start <= checkpoint <= self.end

    def __iter__(self) -> Iterator[int]:
        return self.iter()

    def iter(self) -> Iterator[int]:
        """Lazily yield every checkpoint in the range, in order."""
        current = self.start
        while current <= self.end:
            yield current
            current += 1

    def split(self, chunk_size: int) -> list[CheckpointRange]:
        """Contiguous sub-ranges of ``chunk_size``; the last one may be shorter."""
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        chunks = []
        chunk_start = self.start
        while chunk_start <= self.end:
            chunk_end = min(chunk_start + chunk_size - 1, self.end)
            chunks.append(CheckpointRange(chunk_start, chunk_end))
            chunk_start = chunk_end + 1
        return chunks


@dataclass
class CheckpointStats:
    """Throughput snapshot for monitoring."""

    total_processed: int
    current_checkpoint: int | None
    target_checkpoint: int | None
    processing_rate: float  # checkpoints per second
    estimated_seconds_remaining: float | None

    @classmethod
    def calculate(
        cls,
        tracker: CheckpointTracker,
        total_processed: int,
        started_monotonic: float,
    ) -> CheckpointStats:
        elapsed = time.monotonic() - started_monotonic
        rate = total_processed / elapsed if elapsed > 0 else 0.0

        eta = None
        remaining = tracker.remaining()
        if remaining is not None and rate > 0:
            eta = remaining / rate

        return cls(
            total_processed=total_processed,
            current_checkpoint=tracker.current,
            target_checkpoint=tracker.target,
            processing_rate=rate,
            estimated_seconds_remaining=eta,
        )
