import datetime as dt
import os
import sys
import unittest
from unittest import mock

from botocore.exceptions import ClientError

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
for path in (os.path.join(ROOT_DIR, "src"), os.path.join(ROOT_DIR, "takeoff-backend")):
    if path not in sys.path:
        sys.path.insert(0, path)

os.environ.setdefault("AWS_REGION", "us-west-2")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-west-2")

from fastapi import HTTPException  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import app as backend  # noqa: E402
import auth  # noqa: E402
import ddb  # noqa: E402
from takeoff_log.config import AIConfig  # noqa: E402
from takeoff_log.narrative import NarrativeError, NarrativeTimeout  # noqa: E402
from takeoff_log.report import REPORT_SYSTEM_PROMPT  # noqa: E402

D = dt.date
TODAY = D(2026, 1, 7)  # Wednesday
AI_ON = AIConfig(endpoint="https://ai.example.com/v1", api_key="sk-test")
AI_OFF = AIConfig()


class FakeTable:
    """Just enough of a DynamoDB Table for the key patterns ddb.py issues."""

    def __init__(self):
        self.items = {}

    def put_item(self, Item, ConditionExpression=None):
        key = (Item["PK"], Item["SK"])
        if ConditionExpression == "attribute_not_exists(SK)" and key in self.items:
            raise ClientError(
                {"Error": {"Code": "ConditionalCheckFailedException", "Message": "exists"}}, "PutItem"
            )
        self.items[key] = dict(Item)

    def get_item(self, Key):
        item = self.items.get((Key["PK"], Key["SK"]))
        return {"Item": item} if item else {}

    def delete_item(self, Key):
        self.items.pop((Key["PK"], Key["SK"]), None)

    def query(self, KeyConditionExpression, ExpressionAttributeNames, ExpressionAttributeValues, **kwargs):
        vals = ExpressionAttributeValues
        out = []
        for (pk, sk), item in sorted(self.items.items()):
            if pk != vals[":pk"]:
                continue
            if ":skprefix" in vals and not sk.startswith(vals[":skprefix"]):
                continue
            if ":lo" in vals and not (vals[":lo"] <= sk <= vals[":hi"]):
                continue
            out.append(item)
        return {"Items": out}


class BackendTestCase(unittest.TestCase):
    def setUp(self):
        self.table = FakeTable()
        patches = [
            mock.patch.object(ddb, "_table", self.table),
            mock.patch.object(backend, "today_utc8", return_value=TODAY),
            mock.patch.object(backend, "load_ai_config", return_value=AI_ON),
        ]
        for p in patches:
            p.start()
            self.addCleanup(p.stop)
        self.narrative = mock.AsyncMock(return_value="### Patterns\nSteady week.")
        p = mock.patch.object(backend, "generate_narrative", self.narrative)
        p.start()
        self.addCleanup(p.stop)

        backend.app.dependency_overrides[auth.get_current_user] = lambda: {"sub": "u1", "email": None}
        self.addCleanup(backend.app.dependency_overrides.clear)
        self.client = TestClient(backend.app)

    def seed(self, records, sub="u1"):
        for day, count in records.items():
            ddb.put_record(sub, day, count)


class TestAuthAndHealth(BackendTestCase):
    def test_health_is_public(self):
        backend.app.dependency_overrides.clear()
        r = self.client.get("/health")
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.json()["ok"])

    def test_records_require_login(self):
        backend.app.dependency_overrides.clear()
        r = self.client.get("/records")
        self.assertEqual(r.status_code, 401)

    def test_token_from_header_or_cookie(self):
        self.assertEqual(auth._extract_token("Bearer abc", "cookie"), "abc")
        self.assertEqual(auth._extract_token(None, "cookie"), "cookie")
        with self.assertRaises(HTTPException) as cm:
            auth._extract_token("Basic xyz", None)
        self.assertEqual(cm.exception.status_code, 401)


class TestRecords(BackendTestCase):
    def test_write_read_delete(self):
        self.assertEqual(self.client.post("/records", json={"date": "2026-01-05", "count": 2}).status_code, 200)
        self.assertEqual(self.client.post("/records", json={"date": "2025-12-31", "count": 0}).status_code, 200)
        self.assertEqual(self.client.get("/records").json()["data"], {"2025-12-31": 0, "2026-01-05": 2})
        self.assertEqual(self.client.get("/records", params={"year": 2026}).json()["data"], {"2026-01-05": 2})

        self.client.post("/records", json={"date": "2026-01-05", "count": None})
        self.assertEqual(self.client.get("/records", params={"year": 2026}).json()["data"], {})

    def test_users_are_isolated(self):
        self.seed({D(2026, 1, 5): 3}, sub="someone-else")
        self.assertEqual(self.client.get("/records").json()["data"], {})

    def test_future_date_rejected(self):
        r = self.client.post("/records", json={"date": "2026-01-08", "count": 1})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(self.table.items, {})

    def test_count_out_of_range(self):
        r = self.client.post("/records", json={"date": "2026-01-05", "count": 6})
        self.assertEqual(r.status_code, 400)

    def test_year_out_of_range(self):
        for year in (0, 10000):
            self.assertEqual(self.client.get("/records", params={"year": year}).status_code, 400)
            self.assertEqual(self.client.get("/records/export.csv", params={"year": year}).status_code, 400)

    def test_export_csv(self):
        self.seed({D(2026, 1, 5): 1, D(2025, 6, 1): 2})
        r = self.client.get("/records/export.csv", params={"year": 2026})
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.headers["content-type"].startswith("text/csv"))
        self.assertIn('filename="takeoff-2026.csv"', r.headers["content-disposition"])
        self.assertEqual(r.text.splitlines(), ["date,weekday,count", "2026-01-05,Monday,1"])


class TestReports(BackendTestCase):
    def test_invalid_type(self):
        r = self.client.post("/reports", json={"type": "decade"})
        self.assertEqual(r.status_code, 400)

    def test_positive_offset_rejected(self):
        r = self.client.post("/reports", json={"type": "week", "periodOffset": 1})
        self.assertEqual(r.status_code, 400)

    def test_empty_period(self):
        r = self.client.post("/reports", json={"type": "week"})
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertIn("No records in this period yet.", body["report"])
        self.assertIn("(as of 2026-01-07)", body["report"])
        self.assertFalse(body["narrative"])
        self.narrative.assert_not_awaited()

    def test_current_week_report(self):
        self.seed({D(2026, 1, 5): 1, D(2026, 1, 6): 0, D(2026, 1, 7): 3, D(2025, 12, 30): 2})
        r = self.client.post("/reports", json={"type": "week", "periodOffset": 0})
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertEqual(body["period"], "Week 2, 2026")
        self.assertEqual(body["periodKey"], "2026-W02")
        self.assertEqual(body["partial"], {"actual_data_days": 3, "full_period_days": 7})
        self.assertEqual(body["stats"]["total_count"], 4)
        self.assertEqual(body["stats"]["total_days"], 3)
        self.assertEqual(body["stats"]["max_count_date"], "2026-01-07")
        self.assertTrue(body["narrative"])
        self.assertTrue(body["report"].startswith("## Week 2, 2026 Report"))
        self.assertTrue(body["report"].endswith("### Patterns\nSteady week."))

        config, system, prompt = self.narrative.await_args.args
        self.assertEqual(system, REPORT_SYSTEM_PROMPT)
        self.assertIn("Week 1, 2026", prompt)
        self.assertIn("3 of 7 days so far", prompt)

    def test_ai_not_configured_gives_stats_only(self):
        self.seed({D(2026, 1, 5): 1})
        with mock.patch.object(backend, "load_ai_config", return_value=AI_OFF):
            body = self.client.post("/reports", json={"type": "month"}).json()
        self.assertFalse(body["narrative"])
        self.assertIn("### By Weekday", body["report"])
        self.narrative.assert_not_awaited()

    def test_timeout_is_retryable_and_not_marked(self):
        self.seed({D(2025, 12, 30): 2})
        self.narrative.side_effect = NarrativeTimeout("slow")
        r = self.client.post("/reports", json={"type": "week", "periodOffset": -1, "markViewed": True})
        self.assertEqual(r.status_code, 504)
        pending = self.client.get("/reports/pending").json()["pendingReports"]
        self.assertIn("week", [p["type"] for p in pending])

    def test_stats_only_fallback(self):
        self.seed({D(2025, 12, 30): 2})
        self.narrative.side_effect = NarrativeError("bad gateway")
        r = self.client.post("/reports", json={"type": "week", "periodOffset": -1})
        self.assertEqual(r.status_code, 502)
        r = self.client.post("/reports", json={"type": "week", "periodOffset": -1, "allowStatsOnly": True})
        self.assertEqual(r.status_code, 200)
        self.assertFalse(r.json()["narrative"])
        self.assertIsNone(r.json()["partial"])


class TestPendingReports(BackendTestCase):
    def test_all_pending_then_viewed(self):
        body = self.client.get("/reports/pending").json()
        self.assertTrue(body["aiConfigured"])
        keys = {p["type"]: p["periodKey"] for p in body["pendingReports"]}
        self.assertEqual(keys, {"week": "2026-W01", "month": "2025-M12", "quarter": "2025-Q4", "year": "2025"})

        r = self.client.post("/reports", json={"type": "week", "periodOffset": -1, "markViewed": True})
        self.assertEqual(r.status_code, 200)
        types = [p["type"] for p in self.client.get("/reports/pending").json()["pendingReports"]]
        self.assertEqual(types, ["month", "quarter", "year"])

    def test_marker_is_idempotent(self):
        marker = ddb.ReportViewed(sub="u1", report_type="year", period_key="2025", viewed_at="first")
        ddb.mark_viewed(marker)
        ddb.mark_viewed(marker.model_copy(update={"viewed_at": "second"}))
        self.assertTrue(ddb.is_viewed("u1", "year", "2025"))
        self.assertEqual(self.table.items[("USER#u1", "VIEWED#year#2025")]["viewed_at"], "first")

    def test_ai_flag(self):
        with mock.patch.object(backend, "load_ai_config", return_value=AI_OFF):
            self.assertFalse(self.client.get("/reports/pending").json()["aiConfigured"])


if __name__ == "__main__":
    unittest.main()
