"""
Token usage accounting, one record per completed provider call.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class UsageData:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class UsageRecord:
    model: str
    usage: UsageData
    fallback: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


class UsageTracker:
    """Keeps a per-call log and running session totals."""

    def __init__(self):
        self.records: List[UsageRecord] = []
        self.totals = UsageData()

    def record(self, model: str, usage: Optional[UsageData], fallback: bool = False) -> UsageRecord:
        usage = usage or UsageData()
        entry = UsageRecord(model=model, usage=usage, fallback=fallback)
        self.records.append(entry)
        self.totals.input_tokens += usage.input_tokens
        self.totals.output_tokens += usage.output_tokens
        self.totals.cache_creation_tokens += usage.cache_creation_tokens
        self.totals.cache_read_tokens += usage.cache_read_tokens
        return entry

    @property
    def call_count(self) -> int:
        return len(self.records)

    def summary(self) -> str:
        return (
            f"{self.call_count} calls, {self.totals.input_tokens} input / "
            f"{self.totals.output_tokens} output tokens"
        )
