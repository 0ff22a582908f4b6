"""
Migration Summary Report
Tabular per-step results plus aggregate totals for operator review
"""
import sys
from typing import Any, Dict, List, Optional, TextIO

from ..migrations.engine import MigrationResult

COLUMNS = (
    ("Step", "step_name", 16),
    ("Status", "status", 22),
    ("Source", "source_count", 10),
    ("Inserted", "inserted_count", 10),
    ("Duplicates", "skipped_duplicates", 11),
    ("Filtered", "filtered_count", 9),
    ("Errors", "errors", 8),
    ("Time (s)", "duration", 9),
)


class MigrationReporter:
    """Accumulates step results and renders them; has no effect on migration state"""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self.results: List[MigrationResult] = []

    def add(self, result: MigrationResult):
        self.results.append(result)

    def extend(self, results: List[MigrationResult]):
        self.results.extend(results)

    def totals(self) -> Dict[str, Any]:
        return {
            "source_count": sum(r.source_count for r in self.results),
            "inserted_count": sum(r.inserted_count for r in self.results),
            "skipped_duplicates": sum(r.skipped_duplicates for r in self.results),
            "filtered_count": sum(r.filtered_count for r in self.results),
            "errors": sum(r.errors for r in self.results),
            "duration": sum(r.duration for r in self.results),
        }

    @staticmethod
    def _cell(value: Any, width: int, numeric: bool) -> str:
        if isinstance(value, float):
            text = f"{value:.2f}"
        elif isinstance(value, int):
            text = f"{value:,}"
        else:
            text = str(value)
        return text.rjust(width) if numeric else text.ljust(width)

    def _row(self, values: Dict[str, Any]) -> str:
        cells = []
        for index, (_, key, width) in enumerate(COLUMNS):
            cells.append(self._cell(values.get(key, ""), width, numeric=index >= 2))
        return " | ".join(cells)

    def render(self) -> str:
        header = " | ".join(title.ljust(width) if i < 2 else title.rjust(width)
                            for i, (title, _, width) in enumerate(COLUMNS))
        rule = "-" * len(header)
        lines = [header, rule]

        for result in self.results:
            lines.append(self._row({
                "step_name": result.step_name,
                "status": result.status.value + (" (dry)" if result.dry_run else ""),
                "source_count": result.source_count,
                "inserted_count": result.inserted_count,
                "skipped_duplicates": result.skipped_duplicates,
                "filtered_count": result.filtered_count,
                "errors": result.errors,
                "duration": result.duration,
            }))

        lines.append(rule)
        lines.append(self._row({"step_name": "TOTAL", "status": "", **self.totals()}))

        failures = [r for r in self.results if r.error]
        for result in failures:
            lines.append(f"  ❌ {result.step_name}: {result.error}")
        return "\n".join(lines)

    def print_summary(self, metrics_summary: Optional[Dict[str, Any]] = None):
        print("\n" + "=" * 80, file=self.stream)
        print("📊 MIGRATION SUMMARY", file=self.stream)
        print("=" * 80, file=self.stream)
        if not self.results:
            print("No steps were run.", file=self.stream)
        else:
            print(self.render(), file=self.stream)

        totals = self.totals()
        print("\n🎯 OVERALL RESULTS:", file=self.stream)
        print(f"   • Source documents: {totals['source_count']:,}", file=self.stream)
        print(f"   • Inserted: {totals['inserted_count']:,}", file=self.stream)
        print(f"   • Skipped duplicates: {totals['skipped_duplicates']:,}", file=self.stream)
        print(f"   • Filtered by transform: {totals['filtered_count']:,}", file=self.stream)
        print(f"   • Errors: {totals['errors']:,}", file=self.stream)
        print(f"   • Total time: {totals['duration']:.2f}s", file=self.stream)
        if metrics_summary and metrics_summary.get("total_batches"):
            print(f"   • Batches: {metrics_summary['total_batches']:,} "
                  f"({metrics_summary['average_rate']:.0f} docs/s, "
                  f"peak memory {metrics_summary['peak_memory_mb']:.0f}MB)", file=self.stream)
        print("=" * 80, file=self.stream)
