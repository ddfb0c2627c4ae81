from __future__ import annotations
import datetime as dt
import logging
from typing import Any, Dict, List, Optional

import requests

from .records import to_date_map

log = logging.getLogger(__name__)


class TakeoffClient:
    """Thin requests wrapper around the backend's HTTP API."""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: int = 30,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        r = self.session.request(
            method, f"{self.base_url}{path}", headers=self._headers(), timeout=self.timeout, **kwargs
        )
        if r.status_code >= 300:
            try:
                detail = r.json().get("detail")
            except ValueError:
                detail = r.text
            raise requests.HTTPError(f"HTTP {r.status_code}: {detail}", response=r)
        return r.json()

    # records

    def fetch_records(self, year: Optional[int] = None) -> Dict[dt.date, int]:
        params = {"year": year} if year else None
        body = self._request("GET", "/records", params=params)
        return to_date_map(body.get("data") or {})

    def upsert(self, day: dt.date, count: int) -> None:
        self._request("POST", "/records", json={"date": day.isoformat(), "count": count})

    def delete(self, day: dt.date) -> None:
        self._request("POST", "/records", json={"date": day.isoformat(), "count": None})

    # reports

    def pending_reports(self) -> Dict[str, Any]:
        return self._request("GET", "/reports/pending")

    def check_pending(self) -> List[Dict[str, Any]]:
        """Background poll: any failure means "no report available"."""
        try:
            return list(self.pending_reports().get("pendingReports") or [])
        except (requests.RequestException, ValueError) as e:
            log.warning("Pending report check failed: %s", e)
            return []

    def request_report(
        self,
        report_type: str,
        period_offset: int = 0,
        force_refresh: bool = False,
        mark_viewed: bool = False,
        allow_stats_only: bool = False,
    ) -> Dict[str, Any]:
        body = {
            "type": report_type,
            "periodOffset": period_offset,
            "forceRefresh": force_refresh,
            "markViewed": mark_viewed,
            "allowStatsOnly": allow_stats_only,
        }
        return self._request("POST", "/reports", json=body)
