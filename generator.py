"""Synthetic sensor record generation."""
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

LOCATIONS = ("New York", "London", "Tokyo", "Mumbai", "Sydney", "Berlin", "Paris", "Toronto")
STATUSES = ("active", "inactive", "error")

DAY_MS = 24 * 60 * 60 * 1000


class RecordGenerator:
    """Builds plausible sensor readings from a sequence number.

    The random source and clock are injectable; ``RecordGenerator(seed=1)``
    always produces the same records for the same indexes and clock.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        seed: Optional[int] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._rng = rng or random.Random(seed)
        self._clock = clock

    def record(self, index: int) -> Dict[str, Any]:
        now = self._clock()
        offset_ms = self._rng.randrange(DAY_MS)

        return {
            "recordId": f"REC-{index:06d}",
            "timestamp": now - timedelta(milliseconds=offset_ms),
            "temperature": round(self._rng.uniform(-10, 50), 2),
            "humidity": round(self._rng.uniform(0, 100), 2),
            "location": self._rng.choice(LOCATIONS),
            "status": self._rng.choice(STATUSES),
            "metadata": {"source": "generator", "version": "1.0"},
        }

    def batches(self, total: int, batch_size: int) -> Iterator[List[Dict[str, Any]]]:
        """Yield ``total`` records in chunks of at most ``batch_size``.

        Sequence numbers start at 1. Only one chunk is held in memory at a time.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        generated = 0
        while generated < total:
            size = min(batch_size, total - generated)
            yield [self.record(generated + offset + 1) for offset in range(size)]
            generated += size
