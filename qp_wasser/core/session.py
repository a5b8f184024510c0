# qp_wasser/core/session.py
"""Caller-owned application state: dataset, selection, comments."""
from __future__ import annotations
from pathlib import Path
from typing import Callable
import logging
import threading

from ..loaders import csv_loader
from ..loaders.csv_loader import IngestionError
from .ionbalance import COMMENT_OPTIONS, IonBalanceResult, analyse, seed_comments
from .model import ParsedDataset
from .persistence import AutoSaveTask, PersistenceError, RemoteStateStore, deserialize_state, serialize_state
from .reports import Report, ReportFormat, build_report, write_report
from .selection import SelectionState, available_params

_LOG = logging.getLogger(__name__)


class Session:
    def __init__(self, encoding: str = csv_loader.DEFAULT_ENCODING):
        self.encoding = encoding
        self.dataset: ParsedDataset | None = None
        self.selection: SelectionState | None = None
        self.comments: dict[str, str] = {}
        self.generation = 0             # bumped on every dataset change
        self.last_error: str | None = None
        self._io_lock = threading.Lock()
        self._autosave: AutoSaveTask | None = None

    @property
    def loaded(self) -> bool:
        return self.dataset is not None

    def _require(self) -> ParsedDataset:
        if self.dataset is None:
            raise RuntimeError("no dataset loaded")
        return self.dataset

    # ----- loading -----
    def load_csv(self, path: Path) -> bool:
        try:
            dataset = csv_loader.load(path, {"input": {"encoding": self.encoding}})
        except IngestionError as e:
            return self._fail_load(path, e)
        self._install(dataset)
        return True

    def load_text(self, text: str, file_name: str) -> bool:
        try:
            dataset = csv_loader.parse_text(text, file_name)
        except IngestionError as e:
            return self._fail_load(file_name, e)
        self._install(dataset)
        return True

    def _fail_load(self, source, err: Exception) -> bool:
        # previous dataset (if any) stays as it was
        self.last_error = str(err)
        _LOG.warning("could not load %s: %s", source, err)
        return False

    def _install(self, dataset: ParsedDataset, selection: SelectionState | None = None,
                 comments: dict[str, str] | None = None) -> None:
        self.stop_autosave()
        selection = selection or SelectionState.initial(dataset)
        if comments is None:
            comments = seed_comments({}, analyse(dataset))
        # a save in progress finishes before the swap
        with self._io_lock:
            self.dataset = dataset
            self.selection = selection
            self.comments = dict(comments)
            self.generation += 1
        self.last_error = None
        _LOG.info("loaded %s: %d row(s), %d result column(s)",
                  dataset.file_name, dataset.row_count, len(dataset.result_headers))

    # ----- analyst edits -----
    def set_comment(self, row_id: str, text: str) -> None:
        self._require().record(row_id)
        if text not in COMMENT_OPTIONS:
            _LOG.debug("free-text comment for %s: %r", row_id, text)
        self.comments = {**self.comments, row_id: text}

    def update_selection(self, op: Callable[..., SelectionState], *args) -> SelectionState:
        """Apply a SelectionState operation, e.g. ``update_selection(SelectionState.toggle_row, rid)``."""
        self._require()
        self.selection = op(self.selection, *args)
        return self.selection

    def available_params(self, row_id: str) -> list[str]:
        ds = self._require()
        return available_params(ds.record(row_id), ds.result_headers)

    # ----- derived views (recomputed on every read) -----
    def ion_balance(self) -> list[IonBalanceResult]:
        return analyse(self._require())

    def report(self) -> Report:
        return build_report(self._require(), self.selection)

    def export(self, out_dir: Path, fmt: ReportFormat = "both") -> list[Path]:
        ds = self._require()
        return write_report(ds, self.selection, self.ion_balance(), self.comments,
                            out_dir, csv_loader.export_stem(ds.file_name), fmt=fmt)

    # ----- persistence -----
    def save(self, store: RemoteStateStore, generation: int | None = None) -> bool:
        if self.dataset is None:
            return False
        if not self._io_lock.acquire(blocking=False):
            _LOG.debug("save skipped: another save/load is running")
            return False
        try:
            if generation is not None and generation != self.generation:
                return False
            blob = serialize_state(self.dataset, self.selection, self.comments)
            store.save(blob)
            return True
        except PersistenceError as e:
            self.last_error = str(e)
            _LOG.warning("save failed, state kept in memory: %s", e)
            return False
        finally:
            self._io_lock.release()

    def restore(self, store: RemoteStateStore) -> bool:
        if not self._io_lock.acquire(blocking=False):
            _LOG.debug("restore skipped: another save/load is running")
            return False
        try:
            blob = store.load()
            if blob is None:
                _LOG.info("no saved state found")
                return False
            saved = deserialize_state(blob)
        except PersistenceError as e:
            self.last_error = str(e)
            _LOG.warning("restore failed, state kept in memory: %s", e)
            return False
        finally:
            self._io_lock.release()
        self._install(saved.dataset, saved.selection, dict(saved.comments))
        return True

    def start_autosave(self, store: RemoteStateStore, interval_s: float) -> AutoSaveTask:
        self.stop_autosave()
        self._autosave = AutoSaveTask(self, store, interval_s).start()
        return self._autosave

    def stop_autosave(self) -> None:
        if self._autosave is not None:
            self._autosave.cancel()
            self._autosave = None
