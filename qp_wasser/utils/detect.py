# qp_wasser/utils/detect.py
from __future__ import annotations
from pathlib import Path
from dataclasses import dataclass

# exports written by this tool, never inputs
_OWN_PREFIXES = ("ionenbilanz_", "rohdaten_")


@dataclass(frozen=True)
class DetectedItem:
    path: Path        # actual path on disk
    kind: str         # "csv"


def is_lab_export(p: Path) -> bool:
    return (p.is_file() and p.suffix.lower() == ".csv"
            and not p.name.lower().startswith(_OWN_PREFIXES))


def discover_inputs(root: Path, recurse: bool = True) -> list[DetectedItem]:
    """
    If 'root' is a file -> return that one item (if it is a CSV).
    If 'root' is a folder -> walk (optionally recursively) and collect lab CSV exports.
    """
    if root.is_file():
        return [DetectedItem(root.resolve(), "csv")] if is_lab_export(root) else []
    if not root.is_dir():
        return []

    it = root.rglob("*") if recurse else root.glob("*")
    items = [DetectedItem(p.resolve(), "csv") for p in it if is_lab_export(p)]
    # deterministic ordering
    items.sort(key=lambda x: str(x.path))
    return items
