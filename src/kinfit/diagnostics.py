"""Named running distributions filled by the fit harness.

Every histogram keeps the raw values it was filled with, so the binning can be
changed afterwards and values can be exported as a table. Nothing is ever
removed once filled.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from .models import BinSettings


@dataclass
class Histogram1D:
    """1-D distribution of scalar values."""

    name: str
    title: str
    x_label: str
    bins: BinSettings
    values: list[float] = field(default_factory=list)

    def fill(self, value: float) -> None:
        self.values.append(float(value))

    @property
    def entries(self) -> int:
        return len(self.values)

    def counts(self) -> tuple[np.ndarray, np.ndarray]:
        """Binned counts and bin edges; values outside the range are not counted."""
        return np.histogram(np.asarray(self.values, dtype=float), bins=self.bins.bins, range=self.bins.range)

    def mean(self) -> float:
        return float(np.mean(self.values)) if self.values else float("nan")


@dataclass
class Histogram2D:
    """2-D distribution of `(x, y)` pairs."""

    name: str
    title: str
    x_label: str
    y_label: str
    x_bins: BinSettings
    y_bins: BinSettings
    values: list[tuple[float, float]] = field(default_factory=list)

    def fill(self, x: float, y: float) -> None:
        self.values.append((float(x), float(y)))

    @property
    def entries(self) -> int:
        return len(self.values)

    def counts(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        data = np.asarray(self.values, dtype=float).reshape(-1, 2)
        return np.histogram2d(
            data[:, 0],
            data[:, 1],
            bins=(self.x_bins.bins, self.y_bins.bins),
            range=(self.x_bins.range, self.y_bins.range),
        )


@dataclass
class LabelHistogram:
    """Counts per string label (e.g. particle type names)."""

    name: str
    title: str
    values: list[str] = field(default_factory=list)

    def fill(self, label: str) -> None:
        self.values.append(str(label))

    @property
    def entries(self) -> int:
        return len(self.values)

    def counts(self) -> Counter:
        return Counter(self.values)


Histogram = Histogram1D | Histogram2D | LabelHistogram


class Diagnostics:
    """Mapping from metric name to its running distribution."""

    def __init__(self, name: str = "diagnostics"):
        self.name = name
        self._histograms: dict[str, Histogram] = {}

    def make_1d(self, title: str, x_label: str, bins: BinSettings, name: str | None = None) -> Histogram1D:
        hist = Histogram1D(name=name or title, title=title, x_label=x_label, bins=bins)
        return self._register(hist)

    def make_2d(
        self,
        title: str,
        x_label: str,
        y_label: str,
        x_bins: BinSettings,
        y_bins: BinSettings,
        name: str | None = None,
    ) -> Histogram2D:
        hist = Histogram2D(
            name=name or title, title=title, x_label=x_label, y_label=y_label, x_bins=x_bins, y_bins=y_bins
        )
        return self._register(hist)

    def make_labels(self, title: str, name: str | None = None) -> LabelHistogram:
        return self._register(LabelHistogram(name=name or title, title=title))

    def fill(self, name: str, *values: Any) -> None:
        """Route one observation to the named bucket."""
        self._histograms[name].fill(*values)

    def __getitem__(self, name: str) -> Histogram:
        return self._histograms[name]

    def __contains__(self, name: object) -> bool:
        return name in self._histograms

    def __iter__(self):
        return iter(self._histograms)

    def __len__(self) -> int:
        return len(self._histograms)

    def names(self) -> list[str]:
        return list(self._histograms)

    def entries(self) -> dict[str, int]:
        """Number of fills per metric."""
        return {name: h.entries for name, h in self._histograms.items()}

    def total_entries(self) -> int:
        return sum(h.entries for h in self._histograms.values())

    def rows(self) -> list[dict[str, Any]]:
        """Long-form rows `(metric, value, value_y)` for table export."""
        rows: list[dict[str, Any]] = []
        for name, hist in self._histograms.items():
            for value in hist.values:
                if isinstance(hist, Histogram2D):
                    rows.append({"metric": name, "value": value[0], "value_y": value[1]})
                else:
                    rows.append({"metric": name, "value": value, "value_y": None})
        return rows

    def to_frame(self):
        """Return all recorded values as a pandas DataFrame."""
        from .io import require_pandas

        pd = require_pandas()
        return pd.DataFrame(self.rows(), columns=["metric", "value", "value_y"])

    def _register(self, hist):
        if hist.name in self._histograms:
            raise ValueError(f"Histogram '{hist.name}' already exists in {self.name}.")
        self._histograms[hist.name] = hist
        return hist
