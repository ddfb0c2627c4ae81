from __future__ import annotations
import datetime as dt
import json
import logging
import os
from typing import Dict, List, Literal, Optional, Protocol

import requests
from pydantic import BaseModel

from .records import validate_count

log = logging.getLogger(__name__)

Status = Literal["pending", "synced", "failed"]


class LogEntry(BaseModel):
    date: dt.date
    count: Optional[int] = None  # None = delete
    status: Status = "pending"
    # written while signed in; replaces whatever the server holds
    overwrite: bool = False
    error: Optional[str] = None


class SyncResult(BaseModel):
    synced: int = 0
    skipped: int = 0
    failed: int = 0


class Remote(Protocol):
    def fetch_records(self, year: Optional[int] = None) -> Dict[dt.date, int]: ...
    def upsert(self, day: dt.date, count: int) -> None: ...
    def delete(self, day: dt.date) -> None: ...


# ---------------------------
# Write-ahead log
# ---------------------------

class LocalLog:
    """Append-only list of writes not yet confirmed by the server, kept in a JSON file."""

    def __init__(self, path: str):
        self.path = os.path.expanduser(path)
        self.entries: List[LogEntry] = []
        self.load()

    def load(self) -> None:
        if not os.path.exists(self.path):
            self.entries = []
            return
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f) or []
        self.entries = [LogEntry.model_validate(e) for e in data]

    def save(self) -> None:
        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump([e.model_dump(mode="json") for e in self.entries], f, indent=2)

    def record(self, day: dt.date, count: Optional[int], overwrite: bool = False) -> LogEntry:
        if count is not None:
            count = validate_count(count)
        # only the newest unsynced write per date is kept; a signed-in write stays an overwrite
        stale = [e for e in self.entries if e.date == day and e.status != "synced"]
        overwrite = overwrite or any(e.overwrite for e in stale)
        self.entries = [e for e in self.entries if e.date != day or e.status == "synced"]
        entry = LogEntry(date=day, count=count, overwrite=overwrite)
        self.entries.append(entry)
        self.save()
        return entry

    def pending(self) -> List[LogEntry]:
        return [e for e in self.entries if e.status != "synced"]

    def snapshot(self) -> Dict[dt.date, int]:
        """Replay unsynced entries into the local {date: count} cache; last write wins."""
        out: Dict[dt.date, int] = {}
        for e in self.pending():
            if e.count is None:
                out.pop(e.date, None)
            else:
                out[e.date] = e.count
        return out

    def clear_synced(self) -> None:
        self.entries = self.pending()
        self.save()


# ---------------------------
# Reconciliation
# ---------------------------

def reconcile(local: LocalLog, remote: Remote, entries: Optional[List[LogEntry]] = None) -> SyncResult:
    """
    Push unsynced entries to the server one at a time.

    Offline entries, deletes included, only touch dates the server does not know
    yet; entries written while signed in always overwrite. A failed write keeps
    its entry as `failed` for the next pass.
    """
    todo = local.pending() if entries is None else [e for e in entries if e.status != "synced"]
    result = SyncResult()
    if not todo:
        return result

    server: Dict[dt.date, int] = {}
    if any(not e.overwrite for e in todo):
        server = remote.fetch_records()

    for entry in todo:
        if not entry.overwrite and entry.date in server:
            entry.status = "synced"
            entry.error = None
            result.skipped += 1
            log.debug("Skip %s: server already has %s", entry.date, server[entry.date])
            continue
        try:
            if entry.count is None:
                remote.delete(entry.date)
            else:
                remote.upsert(entry.date, entry.count)
        except requests.RequestException as e:
            entry.status = "failed"
            entry.error = str(e)
            result.failed += 1
            log.warning("Sync of %s failed: %s", entry.date, e)
            continue
        entry.status = "synced"
        entry.error = None
        result.synced += 1

    local.clear_synced()
    log.info("Sync done: %d synced, %d skipped, %d failed", result.synced, result.skipped, result.failed)
    return result


# ---------------------------
# Storage selection
# ---------------------------

class LocalStore:
    authenticated = False

    def __init__(self, local: LocalLog):
        self.local = local

    def write(self, day: dt.date, count: Optional[int]) -> LogEntry:
        return self.local.record(day, count)

    def read(self) -> Dict[dt.date, int]:
        return self.local.snapshot()


class SyncedStore:
    authenticated = True

    def __init__(self, local: LocalLog, remote: Remote):
        self.local = local
        self.remote = remote

    def write(self, day: dt.date, count: Optional[int]) -> LogEntry:
        entry = self.local.record(day, count, overwrite=True)
        try:
            reconcile(self.local, self.remote, entries=[entry])
        except requests.RequestException as e:
            # stays pending; the next `sync` retries it
            log.warning("Could not reach server, %s kept locally: %s", day, e)
        return entry

    def read(self) -> Dict[dt.date, int]:
        data = self.remote.fetch_records()
        for e in self.local.pending():
            if e.count is None:
                data.pop(e.date, None)
            else:
                data[e.date] = e.count
        return data


def open_store(authenticated: bool, local: LocalLog, remote: Optional[Remote] = None):
    if authenticated:
        if remote is None:
            raise ValueError("A remote is required for an authenticated store")
        return SyncedStore(local, remote)
    return LocalStore(local)
