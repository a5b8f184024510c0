# qp_wasser/loaders/csv_loader.py
from __future__ import annotations
from datetime import datetime
from pathlib import Path
import csv, io, logging

from ..core.model import LabRecord, ParsedDataset
from ..core.normalize import german_collation_key

_LOG = logging.getLogger(__name__)

# fixed export layout of the lab system (0-based)
HEADER_ROW = 1
DATA_START_ROW = 2
RESULT_START_COL = 7
SERIES_COL = 0
SAMPLE_COL = 1
REPEAT_COL = 3
REPEAT_MARK = "2"

DEFAULT_ENCODING = "latin-1"


class IngestionError(ValueError):
    """The file cannot be turned into a dataset; nothing partial is returned."""


# ---------- filename helpers ----------
def export_stem(file_name: str) -> str:
    """'Serie 12.csv' -> 'Serie 12' (used for export file names)."""
    name = Path(file_name).name
    return name[:-4] if name.lower().endswith(".csv") else Path(name).stem


# ---------- raw rows ----------
def _raw_rows(text: str) -> list[list[str]]:
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=",")
    try:
        # empty lines do not count as rows (header index refers to non-empty lines)
        return [row for row in reader if row and row != [""]]
    except csv.Error as e:
        raise IngestionError(f"CSV konnte nicht gelesen werden: {e}") from e


def _cell(row: list[str], idx: int) -> str:
    return row[idx].strip() if idx < len(row) and row[idx] else ""


def _header_mapping(header_row: list[str]) -> list[tuple[str, int]]:
    mapping = [
        (name.strip(), idx)
        for idx, name in enumerate(header_row)
        if idx >= RESULT_START_COL and name and name.strip()
    ]
    # presentation order only; values are still looked up by original index
    mapping.sort(key=lambda item: german_collation_key(item[0]))
    return mapping


def parse_rows(raw_rows: list[list[str]], file_name: str,
               imported_at: datetime | None = None) -> ParsedDataset:
    if not raw_rows or len(raw_rows) < 3:
        raise IngestionError(
            "Die Datei scheint leer zu sein oder hat nicht genügend Zeilen (Header + Daten)."
        )
    header_row = raw_rows[HEADER_ROW]
    if not header_row:
        raise IngestionError("Konnte die Header-Zeile (Zeile 2) nicht lesen.")

    mapping = _header_mapping(header_row)
    if not mapping:
        _LOG.warning("%s: no result columns from column %d onwards", file_name, RESULT_START_COL + 1)

    records: list[LabRecord] = []
    skipped = 0
    for i in range(DATA_START_ROW, len(raw_rows)):
        row = raw_rows[i]
        if not row or len(row) < 2:
            skipped += 1
            continue
        results = {name: _cell(row, idx) for name, idx in mapping}
        repeat_val = _cell(row, REPEAT_COL)
        records.append(LabRecord(
            id=f"row-{i}",
            series_id=_cell(row, SERIES_COL),
            sample_id=_cell(row, SAMPLE_COL),
            is_repeat=(repeat_val == REPEAT_MARK),
            raw_repeat_value=repeat_val,
            results=results,
        ))
    if skipped:
        _LOG.info("%s: skipped %d malformed row(s)", file_name, skipped)

    return ParsedDataset(
        file_name=file_name,
        import_timestamp=imported_at or datetime.now(),
        result_headers=tuple(name for name, _ in mapping),
        data=tuple(records),
    )


def parse_text(text: str, file_name: str, imported_at: datetime | None = None) -> ParsedDataset:
    return parse_rows(_raw_rows(text), file_name, imported_at)


def parse_bytes(buff: bytes, file_name: str, encoding: str = DEFAULT_ENCODING,
                imported_at: datetime | None = None) -> ParsedDataset:
    try:
        text = buff.decode(encoding)
    except (UnicodeDecodeError, LookupError) as e:
        raise IngestionError(f"Datei konnte nicht dekodiert werden ({encoding}): {e}") from e
    return parse_text(text, file_name, imported_at)


# ---------- public loader ----------
def load(path: Path, cfg: dict | None = None) -> ParsedDataset:
    """
    Accepts: a lab CSV export (comma separated, single-byte encoding).
    Returns: ParsedDataset with result headers in German collation order.
    """
    encoding = str(((cfg or {}).get("input", {}) or {}).get("encoding", DEFAULT_ENCODING))
    try:
        buff = Path(path).read_bytes()
    except OSError as e:
        raise IngestionError(f"Datei konnte nicht gelesen werden: {e}") from e
    return parse_bytes(buff, Path(path).name, encoding=encoding)
