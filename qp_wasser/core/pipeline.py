# qp_wasser/core/pipeline.py
from __future__ import annotations
from pathlib import Path
import logging

from ..loaders.csv_loader import export_stem
from .classify import ChemSet
from .persistence import RemoteStateStore
from .plotting import save_ion_balance_plot
from .reports import write_raw_data_csv
from .selection import SelectionState, describe_params
from .session import Session

_LOG = logging.getLogger(__name__)


def apply_config_selection(session: Session, cfg: dict) -> SelectionState:
    """Batch counterpart of the selection screen: rows and optional P/S/N set from config."""
    sel_cfg = (cfg or {}).get("selection", {}) or {}
    if bool(sel_cfg.get("select_all_rows", True)) and not session.selection.all_selected():
        session.update_selection(SelectionState.toggle_all_rows)

    chem = sel_cfg.get("chem_set")
    if chem:
        chem_set = ChemSet(str(chem).upper())
        for rid in sorted(session.selection.selected_row_ids):
            session.update_selection(SelectionState.apply_chem_set, rid, chem_set,
                                     session.available_params(rid))
    if _LOG.isEnabledFor(logging.DEBUG):
        for rid in sorted(session.selection.selected_row_ids):
            _LOG.debug("%s: %s", rid, describe_params(session.available_params(rid), session.selection.params(rid)))
    return session.selection


def run_pipeline(csv_path: Path, cfg: dict, out_root: Path) -> list[Path]:
    verbose = bool((cfg.get("logging") or {}).get("verbose", True))
    encoding = str((cfg.get("input") or {}).get("encoding", "latin-1"))

    session = Session(encoding=encoding)
    if not session.load_csv(csv_path):
        print(f"[WARN] {csv_path.name}: {session.last_error}")
        return []

    ds = session.dataset
    stem = export_stem(ds.file_name)
    out_dir = out_root / stem
    out_dir.mkdir(parents=True, exist_ok=True)
    if verbose:
        print(f"[dataset] {ds.file_name}: {ds.row_count} row(s), {len(ds.result_headers)} result column(s)")

    apply_config_selection(session, cfg)
    if verbose:
        print(f"[selection] {len(session.selection.selected_row_ids)} of {ds.row_count} sample(s) selected")

    rep_cfg = cfg.get("reports", {}) or {}
    fmt = str(rep_cfg.get("format", "both")).lower()
    written = session.export(out_dir, fmt=fmt)

    if bool(rep_cfg.get("raw_data", False)):
        raw_path = out_dir / f"Rohdaten_{stem}.csv"
        write_raw_data_csv(ds, raw_path, f"{stem} Rohdaten")
        written.append(raw_path)

    if bool(rep_cfg.get("plots", False)):
        plot_path = save_ion_balance_plot(session.ion_balance(), out_dir, stem)
        if plot_path is not None:
            written.append(plot_path)

    # optional: publish the state so the shared web view picks it up
    p_cfg = cfg.get("persistence", {}) or {}
    url = p_cfg.get("url")
    if url:
        store = RemoteStateStore(str(url), timeout_s=float(p_cfg.get("timeout_s", 10.0)))
        if session.save(store):
            print(f"[OK] state saved → {url}")
        else:
            print(f"[WARN] state not saved: {session.last_error}")

    return written
