"""Run summaries returned by the scheduled lifecycle jobs."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


@dataclass
class JobSummary:
    """Aggregated results for one sweep of a lifecycle job."""

    job: str
    candidates: int = 0
    delivered: int = 0
    failures: int = 0
    counters: Dict[str, int] = field(default_factory=dict)

    def bump(self, key: str, amount: int = 1) -> None:
        self.counters[key] = self.counters.get(key, 0) + amount

    def as_dict(self) -> Dict[str, object]:
        return {
            "job": self.job,
            "candidates": self.candidates,
            "delivered": self.delivered,
            "failures": self.failures,
            **self.counters,
        }
