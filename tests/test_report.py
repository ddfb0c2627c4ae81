import datetime as dt
import os
import sys
import unittest

SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from takeoff_log.report import (  # noqa: E402
    PartialInfo,
    build_analysis_prompt,
    build_report_context,
    clamp_to_today,
    combine_report,
    previous_period,
    render_empty_report,
    render_stats_section,
)
from takeoff_log.periods import resolve_period  # noqa: E402
from takeoff_log.stats import aggregate  # noqa: E402

D = dt.date


class RecordingFetch:
    def __init__(self, records):
        self.records = records
        self.calls = []

    def __call__(self, start, end):
        self.calls.append((start, end))
        return {d: v for d, v in self.records.items() if start <= d <= end}


class TestReportContext(unittest.TestCase):
    def test_current_week_on_wednesday_is_partial(self):
        fetch = RecordingFetch({D(2026, 1, 5): 1, D(2026, 1, 7): 2})
        ctx = build_report_context("week", D(2026, 1, 7), fetch)
        self.assertEqual(ctx.partial, PartialInfo(actual_data_days=3, full_period_days=7))
        self.assertEqual(ctx.effective_end, D(2026, 1, 7))
        self.assertEqual(ctx.stats.total_days, 3)
        self.assertEqual(ctx.stats.zero_days, 1)
        self.assertEqual(ctx.record_count, 2)

    def test_last_day_of_period_is_not_partial(self):
        ctx = build_report_context("week", D(2026, 1, 11), RecordingFetch({}))
        self.assertIsNone(ctx.partial)
        self.assertEqual(ctx.stats.total_days, 7)

    def test_previous_offset_uses_full_period(self):
        ctx = build_report_context("month", D(2026, 2, 10), RecordingFetch({}), period_offset=-1)
        self.assertEqual(ctx.period.key, "2026-M01")
        self.assertIsNone(ctx.partial)
        self.assertEqual(ctx.stats.total_days, 31)

    def test_three_prior_periods(self):
        fetch = RecordingFetch({D(2025, 12, 2): 4})
        ctx = build_report_context("month", D(2026, 2, 10), fetch)
        self.assertEqual([p.label for p in ctx.previous], ["January 2026", "December 2025", "November 2025"])
        self.assertEqual(ctx.previous[1].stats.total_count, 4)
        # 3 prior ranges + the target range
        self.assertEqual(len(fetch.calls), 4)
        self.assertEqual(fetch.calls[-1], (D(2026, 2, 1), D(2026, 2, 10)))

    def test_clamp_helper(self):
        p = resolve_period("quarter", D(2026, 1, 10))
        end, partial = clamp_to_today(p, D(2026, 1, 10))
        self.assertEqual(end, D(2026, 1, 10))
        self.assertEqual(partial.actual_data_days, 10)
        self.assertEqual(partial.full_period_days, 90)

    def test_previous_period_for_pending(self):
        self.assertEqual(previous_period("week", D(2026, 1, 7)).key, "2026-W01")
        self.assertEqual(previous_period("year", D(2026, 1, 7)).key, "2025")


class TestRendering(unittest.TestCase):
    def setUp(self):
        records = {D(2026, 1, 5): 1, D(2026, 1, 6): 0, D(2026, 1, 7): 3}
        self.stats = aggregate(records, D(2026, 1, 5), D(2026, 1, 11))

    def test_stats_section(self):
        md = render_stats_section("Week 2, 2026", self.stats)
        self.assertTrue(md.startswith("## Week 2, 2026 Report"))
        self.assertIn("- Total count: 4", md)
        self.assertIn("- Average per day: 0.57", md)
        self.assertIn("- Best day: 3 (2026-01-07)", md)
        self.assertIn("- Most active weekday: Wednesday (3 total)", md)
        self.assertIn("- Sunday: 0 total over 1 days", md)
        self.assertNotIn("in progress", md)

    def test_partial_note(self):
        md = render_stats_section("Week 2, 2026", self.stats, PartialInfo(actual_data_days=3, full_period_days=7))
        self.assertIn("data covers 3 of 7 days", md)

    def test_no_activity(self):
        md = render_stats_section("Week 2, 2026", aggregate({}, D(2026, 1, 5), D(2026, 1, 11)))
        self.assertIn("- Most active weekday: none", md)
        self.assertIn("- Best day: 0\n", md)

    def test_empty_report(self):
        self.assertIn("No records in this period yet.", render_empty_report("2026"))
        self.assertIn("(as of 2026-01-07)", render_empty_report("Week 2, 2026", D(2026, 1, 7)))

    def test_combine(self):
        self.assertEqual(combine_report("stats", None), "stats")
        self.assertEqual(combine_report("stats", "prose"), "stats\n\nprose")

    def test_prompt_contains_trend_and_partial(self):
        ctx = build_report_context("week", D(2026, 1, 7), RecordingFetch({D(2025, 12, 30): 2}))
        prompt = build_analysis_prompt(
            "week", ctx.period.label, ctx.stats, ctx.previous, "2026-01-07T10:00:00+08:00", ctx.partial, "abc"
        )
        self.assertIn("- Report type: Weekly", prompt)
        self.assertIn("- Current time: 2026-01-07T10:00:00+08:00", prompt)
        self.assertIn("3 of 7 days so far", prompt)
        self.assertIn("Week 1, 2026", prompt)
        self.assertIn("- Request id: abc", prompt)
        self.assertIn("### Patterns", prompt)


if __name__ == "__main__":
    unittest.main()
