"""Wall-clock lap timer used by the driver to report where time went."""

import time
from typing import List, Tuple


class Timings:
    def __init__(self):
        self.points: List[Tuple[str, float]] = []
        self._last = time.perf_counter()

    @classmethod
    def start(cls) -> "Timings":
        return cls()

    def lap(self, label: str) -> float:
        now = time.perf_counter()
        taken = (now - self._last) * 1000.0
        self._last = now
        self.points.append((label, taken))
        return taken

    def append(self, other: "Timings", prefix: str) -> None:
        if not other.points:
            self.lap(prefix)
            return
        for label, taken in other.points:
            self.points.append((f"{prefix}/{label}", taken))
        self._last = time.perf_counter()

    @property
    def total(self) -> float:
        return sum(taken for _, taken in self.points)

    def report(self) -> str:
        total = self.total
        rows = [(label, f"{taken:.4f}", f"{taken * 100.0 / total:.4f}" if total else "0.0000")
                for label, taken in self.points]
        rows.append(("Total", f"{total:.4f}", "100%"))
        header = ("Category", "Time (MS)", "%")
        widths = [max(len(r[i]) for r in rows + [header]) for i in range(3)]
        line = "+" + "+".join("-" * (w + 2) for w in widths) + "+"
        out = [line, _row(header, widths), line]
        out.extend(_row(r, widths) for r in rows)
        out.append(line)
        return "\n".join(out)


def _row(cells, widths) -> str:
    return "| " + " | ".join(c.ljust(w) for c, w in zip(cells, widths)) + " |"
