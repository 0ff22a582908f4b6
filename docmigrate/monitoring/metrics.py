"""
Batch Metrics
Timing and throughput of migration batches, per step
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import psutil

logger = logging.getLogger(__name__)


@dataclass
class BatchTiming:
    """Metrics for a single batch"""
    step_name: str
    source: str
    start_time: float
    end_time: Optional[float] = None
    documents_processed: int = 0
    success: bool = False

    @property
    def duration(self) -> float:
        if self.end_time is None:
            return time.time() - self.start_time
        return self.end_time - self.start_time

    @property
    def rate(self) -> float:
        return self.documents_processed / self.duration if self.duration > 0 else 0


class BatchMetrics:
    """
    Collects batch timings with:
    - per-step throughput
    - slowest batch tracking
    - peak resident memory of the process
    """

    def __init__(self):
        self.batches: List[BatchTiming] = []
        self.peak_memory_mb = 0.0
        self._process = psutil.Process()

    def start_batch(self, step_name: str, source: str) -> BatchTiming:
        return BatchTiming(step_name=step_name, source=source, start_time=time.time())

    def end_batch(self, timing: BatchTiming, documents_processed: int, success: bool = True):
        timing.end_time = time.time()
        timing.documents_processed = documents_processed
        timing.success = success
        self.batches.append(timing)
        self._sample_memory()
        logger.debug(f"{timing.step_name}/{timing.source}: {documents_processed} docs "
                     f"in {timing.duration:.2f}s ({timing.rate:.0f} docs/s)")

    def _sample_memory(self):
        memory_mb = self._process.memory_info().rss / 1024 / 1024
        if memory_mb > self.peak_memory_mb:
            self.peak_memory_mb = memory_mb

    def step_summary(self, step_name: str) -> Dict[str, Any]:
        batches = [b for b in self.batches if b.step_name == step_name]
        if not batches:
            return {"batches": 0, "documents": 0, "rate": 0.0, "slowest_batch": 0.0}

        documents = sum(b.documents_processed for b in batches)
        busy_time = sum(b.duration for b in batches)
        return {
            "batches": len(batches),
            "documents": documents,
            "rate": documents / busy_time if busy_time > 0 else 0.0,
            "slowest_batch": max(b.duration for b in batches),
        }

    def get_summary(self) -> Dict[str, Any]:
        documents = sum(b.documents_processed for b in self.batches)
        busy_time = sum(b.duration for b in self.batches)
        return {
            "total_batches": len(self.batches),
            "failed_batches": sum(1 for b in self.batches if not b.success),
            "total_documents": documents,
            "average_rate": documents / busy_time if busy_time > 0 else 0.0,
            "peak_memory_mb": self.peak_memory_mb,
        }
