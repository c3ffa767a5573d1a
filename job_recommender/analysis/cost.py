"""
Cost accounting for calls to the analysis service.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional
import threading

from job_recommender.utils.storage import append_jsonl, read_jsonl


def estimate_tokens(chars: int) -> int:
    """Rough token count (about four characters per token)."""
    return max(1, (chars + 3) // 4) if chars else 0


@dataclass(frozen=True)
class CostEntry:
    """One external call (successful or not)."""
    kind: str
    request_key: str
    input_chars: int
    output_chars: int
    input_tokens: int
    output_tokens: int
    estimated_cost: float
    success: bool
    attempt: int
    timestamp: datetime = field(default_factory=datetime.now)
    batched: bool = False


class CostLedger:
    """Records every external call and every cache hit, per invocation kind."""

    def __init__(
        self,
        input_cost_per_1k: float = 0.003,
        output_cost_per_1k: float = 0.015,
        storage_path: Optional[str] = None,
    ):
        """
        Args:
            input_cost_per_1k / output_cost_per_1k: USD per thousand tokens
            storage_path: JSON-lines file keeping the ledger across runs (None keeps it in memory)
        """
        self.input_cost_per_1k = input_cost_per_1k
        self.output_cost_per_1k = output_cost_per_1k
        self.storage_path = Path(storage_path) if storage_path else None
        self._entries: list[CostEntry] = []
        self._cache_hits: dict[str, int] = {}
        self._lock = threading.Lock()

        if self.storage_path:
            for data in read_jsonl(self.storage_path):
                if data.get("cache_hit"):
                    self._cache_hits[data["kind"]] = self._cache_hits.get(data["kind"], 0) + 1
                else:
                    data["timestamp"] = datetime.fromisoformat(data["timestamp"])
                    self._entries.append(CostEntry(**data))

    def record_call(
        self,
        kind: str,
        request_key: str,
        input_chars: int,
        output_chars: int,
        success: bool,
        attempt: int,
        timestamp: datetime,
        input_tokens: Optional[int] = None,
        output_tokens: Optional[int] = None,
        batched: bool = False,
    ) -> CostEntry:
        input_tokens = input_tokens if input_tokens is not None else estimate_tokens(input_chars)
        output_tokens = output_tokens if output_tokens is not None else estimate_tokens(output_chars)
        cost = (input_tokens / 1000) * self.input_cost_per_1k + (output_tokens / 1000) * self.output_cost_per_1k

        entry = CostEntry(
            kind=kind,
            request_key=request_key,
            input_chars=input_chars,
            output_chars=output_chars,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost=cost,
            success=success,
            attempt=attempt,
            timestamp=timestamp,
            batched=batched,
        )
        with self._lock:
            self._entries.append(entry)
            if self.storage_path:
                record = asdict(entry)
                record["timestamp"] = entry.timestamp.isoformat()
                append_jsonl(self.storage_path, record)
        return entry

    def record_cache_hit(self, kind: str) -> None:
        with self._lock:
            self._cache_hits[kind] = self._cache_hits.get(kind, 0) + 1
            if self.storage_path:
                append_jsonl(self.storage_path, {"kind": kind, "cache_hit": True})

    def entries(self, kind: Optional[str] = None) -> list[CostEntry]:
        with self._lock:
            return [e for e in self._entries if kind is None or e.kind == kind]

    def external_calls(self, kind: Optional[str] = None) -> int:
        return len(self.entries(kind))

    def cache_hits(self, kind: Optional[str] = None) -> int:
        with self._lock:
            if kind is None:
                return sum(self._cache_hits.values())
            return self._cache_hits.get(kind, 0)

    @property
    def total_cost(self) -> float:
        return sum(e.estimated_cost for e in self.entries())

    def summary(self) -> dict:
        """Per-kind totals for monitoring."""
        with self._lock:
            entries = list(self._entries)
            hits = dict(self._cache_hits)

        by_kind: dict[str, dict] = {}
        for kind in sorted({e.kind for e in entries} | set(hits)):
            kind_entries = [e for e in entries if e.kind == kind]
            by_kind[kind] = {
                "calls": len(kind_entries),
                "failures": sum(1 for e in kind_entries if not e.success),
                "cache_hits": hits.get(kind, 0),
                "input_chars": sum(e.input_chars for e in kind_entries),
                "output_chars": sum(e.output_chars for e in kind_entries),
                "input_tokens": sum(e.input_tokens for e in kind_entries),
                "output_tokens": sum(e.output_tokens for e in kind_entries),
                "estimated_cost": round(sum(e.estimated_cost for e in kind_entries), 6),
            }

        return {
            "total_calls": len(entries),
            "total_cache_hits": sum(hits.values()),
            "total_estimated_cost": round(sum(e.estimated_cost for e in entries), 6),
            "by_kind": by_kind,
        }
