"""Unit tests for diagnostics accumulation."""

from __future__ import annotations

import unittest

from kinfit import BinSettings, ConfigurationError, Diagnostics


class TestDiagnostics(unittest.TestCase):
    """Validate routing, binning and export of named distributions."""

    def setUp(self) -> None:
        self.diag = Diagnostics("test")
        self.diag.make_1d("ChiSquare", "ChiSquare", BinSettings(10, 0.0, 10.0), name="chisquare")
        self.diag.make_2d("PID", "E", "dE", BinSettings(2, 0.0, 2.0), BinSettings(2, 0.0, 2.0), name="pid")
        self.diag.make_labels("Types", name="types")

    def test_fill_routes_values_by_name(self) -> None:
        self.diag.fill("chisquare", 1.5)
        self.diag.fill("chisquare", 2.5)
        self.diag.fill("pid", 0.5, 1.5)
        self.diag.fill("types", "g")
        self.assertEqual(self.diag["chisquare"].values, [1.5, 2.5])
        self.assertEqual(self.diag["pid"].values, [(0.5, 1.5)])
        self.assertEqual(self.diag.entries(), {"chisquare": 2, "pid": 1, "types": 1})
        self.assertEqual(self.diag.total_entries(), 4)

    def test_counts_exclude_out_of_range_values(self) -> None:
        for value in (0.5, 0.7, 9.5, 12.0, -1.0):
            self.diag.fill("chisquare", value)
        counts, edges = self.diag["chisquare"].counts()
        self.assertEqual(int(counts.sum()), 3)
        self.assertEqual(int(counts[0]), 2)
        self.assertEqual(len(edges), 11)
        # raw values are kept, including the ones outside the axis
        self.assertEqual(self.diag["chisquare"].entries, 5)

    def test_two_dimensional_and_label_counts(self) -> None:
        self.diag.fill("pid", 0.5, 0.5)
        self.diag.fill("pid", 1.5, 0.5)
        self.diag.fill("pid", 1.5, 0.6)
        counts, _, _ = self.diag["pid"].counts()
        self.assertEqual(counts.tolist(), [[1.0, 0.0], [2.0, 0.0]])
        for label in ("g", "p", "g"):
            self.diag.fill("types", label)
        self.assertEqual(self.diag["types"].counts()["g"], 2)

    def test_unknown_and_duplicate_names(self) -> None:
        with self.assertRaises(KeyError):
            self.diag.fill("missing", 1.0)
        with self.assertRaises(ValueError):
            self.diag.make_1d("again", "x", BinSettings(1), name="chisquare")

    def test_bin_settings_validation(self) -> None:
        self.assertEqual(BinSettings(100).range, (0.0, 100.0))
        with self.assertRaises(ConfigurationError):
            BinSettings(0)
        with self.assertRaises(ConfigurationError):
            BinSettings(10, 5.0, 1.0)

    def test_to_frame_is_long_form(self) -> None:
        self.diag.fill("chisquare", 1.0)
        self.diag.fill("pid", 0.5, 1.5)
        self.diag.fill("types", "p")
        frame = self.diag.to_frame()
        self.assertEqual(list(frame.columns), ["metric", "value", "value_y"])
        self.assertEqual(len(frame), 3)
        pid_row = frame[frame["metric"] == "pid"].iloc[0]
        self.assertEqual(pid_row["value"], 0.5)
        self.assertEqual(pid_row["value_y"], 1.5)


if __name__ == "__main__":
    unittest.main()
