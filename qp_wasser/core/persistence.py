# qp_wasser/core/persistence.py
"""
Shared state blob ``{parsedData, comments, selection}`` on a remote store.

The store keeps exactly one blob under a fixed name; a save overwrites it
(last writer wins, no versioning).
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Mapping
import logging
import threading
import requests

from .model import LabRecord, ParsedDataset
from .selection import SelectionState

if TYPE_CHECKING:
    from .session import Session

_LOG = logging.getLogger(__name__)

STATE_NAME = "shared-state.json"
GET_PATH = "/api/getState"
SAVE_PATH = "/api/saveState"


class PersistenceError(RuntimeError):
    pass


# ---------- (de)serialization ----------
def dataset_to_dict(dataset: ParsedDataset) -> dict:
    return {
        "fileName": dataset.file_name,
        "uploadDate": dataset.import_timestamp.isoformat(),
        "resultHeaders": list(dataset.result_headers),
        "data": [
            {
                "id": r.id,
                "seriesId": r.series_id,
                "sampleId": r.sample_id,
                "isRepeat": r.is_repeat,
                "rawRepeatValue": r.raw_repeat_value,
                "results": dict(r.results),
            }
            for r in dataset.data
        ],
    }


def parse_upload_date(value: str) -> datetime:
    """ISO timestamp as written by browsers (``...Z``) or by ``isoformat``."""
    value = str(value).strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def dataset_from_dict(data: Mapping) -> ParsedDataset:
    headers = tuple(data.get("resultHeaders", []))
    records = []
    for row in data.get("data", []):
        results = row.get("results") or {}
        records.append(LabRecord(
            id=str(row["id"]),
            series_id=str(row.get("seriesId", "")),
            sample_id=str(row.get("sampleId", "")),
            is_repeat=bool(row.get("isRepeat", False)),
            raw_repeat_value=str(row.get("rawRepeatValue", "")),
            # keep the results keys aligned with the header list
            results={h: str(results.get(h, "") or "") for h in headers},
        ))
    uploaded = data.get("uploadDate")
    return ParsedDataset(
        file_name=str(data.get("fileName", "")),
        import_timestamp=parse_upload_date(uploaded) if uploaded else datetime.now(),
        result_headers=headers,
        data=tuple(records),
    )


@dataclass(frozen=True)
class SavedState:
    dataset: ParsedDataset
    selection: SelectionState
    comments: Mapping[str, str]


def serialize_state(dataset: ParsedDataset, selection: SelectionState, comments: Mapping[str, str]) -> dict:
    return {
        "parsedData": dataset_to_dict(dataset),
        "comments": dict(comments),
        "selection": selection.to_dict(),
    }


def deserialize_state(blob: Mapping) -> SavedState:
    try:
        dataset = dataset_from_dict(blob["parsedData"])
        selection = SelectionState.from_dict(blob.get("selection") or {})
        comments = {str(k): str(v) for k, v in (blob.get("comments") or {}).items()}
    except (KeyError, TypeError, ValueError) as e:
        raise PersistenceError(f"malformed state blob: {e}") from e
    # rows unknown to the selection start deselected with no parameters
    params = dict(selection.row_params)
    for rid in dataset.row_ids:
        params.setdefault(rid, frozenset())
    selection = SelectionState(selection.selected_row_ids & set(dataset.row_ids), params)
    return SavedState(dataset=dataset, selection=selection, comments=comments)


# ---------- remote store ----------
class RemoteStateStore:
    def __init__(self, base_url: str, timeout_s: float = 10.0, http: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = float(timeout_s)
        self._http = http or requests.Session()

    def load(self) -> dict | None:
        """Last saved blob, or None when nothing has been saved yet."""
        url = self.base_url + GET_PATH
        try:
            resp = self._http.get(url, timeout=self.timeout_s)
        except requests.RequestException as e:
            raise PersistenceError(f"GET {url} failed: {e}") from e
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise PersistenceError(f"GET {url} returned {resp.status_code}: {resp.text[:200]}")
        try:
            return resp.json()
        except ValueError as e:
            raise PersistenceError(f"GET {url} returned invalid JSON") from e

    def save(self, blob: Mapping) -> None:
        url = self.base_url + SAVE_PATH
        try:
            resp = self._http.post(url, json=blob, timeout=self.timeout_s)
        except requests.RequestException as e:
            raise PersistenceError(f"POST {url} failed: {e}") from e
        if not 200 <= resp.status_code < 300:
            raise PersistenceError(f"POST {url} returned {resp.status_code}: {resp.text[:200]}")
        _LOG.info("state saved as %s", STATE_NAME)


# ---------- periodic save ----------
class AutoSaveTask:
    """
    Saves a session every ``interval_s`` seconds while the dataset generation it
    was started for is still loaded. A new file (or restore) ends the task.
    """

    def __init__(self, session: "Session", store: RemoteStateStore, interval_s: float):
        self.session = session
        self.store = store
        self.interval_s = float(interval_s)
        self.generation = session.generation
        self._timer: threading.Timer | None = None
        self._cancelled = threading.Event()

    @property
    def active(self) -> bool:
        return not self._cancelled.is_set() and self.session.generation == self.generation

    def start(self) -> "AutoSaveTask":
        self._schedule()
        return self

    def cancel(self) -> None:
        self._cancelled.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def run_once(self) -> bool:
        """One tick; False when stale, busy or failed (a failed tick retries next interval)."""
        if not self.active:
            self.cancel()
            return False
        return self.session.save(self.store, generation=self.generation)

    def _schedule(self) -> None:
        if self._cancelled.is_set():
            return
        self._timer = threading.Timer(self.interval_s, self._tick)
        self._timer.daemon = True
        self._timer.start()

    def _tick(self) -> None:
        self.run_once()
        if self.active:
            self._schedule()
