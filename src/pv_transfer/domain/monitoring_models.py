"""Progress sampling models for in-flight transfers."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

_DEFAULT_WINDOW_SAMPLES = 10


@dataclass(slots=True, frozen=True)
class ProgressSample:
    """Cumulative progress observed at one tick."""

    timestamp: float
    bytes_done: int
    files_done: int | None = None


@dataclass(slots=True)
class ThroughputWindow:
    """Moving throughput over the most recent samples."""

    max_samples: int = _DEFAULT_WINDOW_SAMPLES
    _samples: deque[ProgressSample] = field(init=False, repr=False)
    _rates: deque[float] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        size = max(1, self.max_samples)
        self._samples = deque(maxlen=size + 1)
        self._rates = deque(maxlen=size)

    def add(self, sample: ProgressSample) -> None:
        if self._samples:
            previous = self._samples[-1]
            elapsed = sample.timestamp - previous.timestamp
            if elapsed > 0:
                self._rates.append(max(0, sample.bytes_done - previous.bytes_done) / elapsed)
        self._samples.append(sample)

    @property
    def latest(self) -> ProgressSample | None:
        return self._samples[-1] if self._samples else None

    @property
    def instantaneous_rate(self) -> float:
        return self._rates[-1] if self._rates else 0.0

    @property
    def average_rate(self) -> float:
        if not self._rates:
            return 0.0
        return sum(self._rates) / len(self._rates)


@dataclass(slots=True, frozen=True)
class TransferProgressSnapshot:
    """Progress view handed to reporters on every tick."""

    label: str
    bytes_done: int = 0
    bytes_total: int | None = None
    files_done: int | None = None
    rate: float = 0.0
    average_rate: float = 0.0
    elapsed_seconds: float = 0.0

    @property
    def percent_complete(self) -> float | None:
        """Return completion ratio in percent when total size is known."""

        if self.bytes_total is None or self.bytes_total <= 0:
            return None
        ratio = (self.bytes_done / self.bytes_total) * 100
        return max(0.0, min(100.0, round(ratio, 2)))


__all__ = ["ProgressSample", "ThroughputWindow", "TransferProgressSnapshot"]
