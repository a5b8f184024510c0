# qp_wasser/core/reports.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Literal, Mapping, Sequence
import csv
import logging
import math
import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from .classify import GROUP_ORDER, ChemSet, DeviceGroup, base_name, classify, group_sort_key, relevant_headers
from .ionbalance import TABLE_COLUMNS, IonBalanceResult, effective_comment, ion_balance_frame, REMARK_OK
from .model import LabRecord, ParsedDataset
from .normalize import natural_key, parse_german_float
from .selection import SelectionState

ReportFormat = Literal["csv", "xlsx", "both"]

_LOG = logging.getLogger(__name__)

SHEET_REMEASUREMENT = "Nachmessung"
SHEET_ION_BALANCE = "Ionenbilanz"
INACTIVE_MARK = "x"
HANDOFF_NOTE = (
    "Nach Eintragen der letzten noch ausstehenden Messergebnisse bitte in den Ordner "
    "\"Nachmessungen fertig\" auf G schieben! … und Theo bitte Bescheid geben, "
    "dass die Nachmessungen abgeschlossen sind."
)


# ---------- row colours ----------
class RowColour(Enum):
    # (hex fill, legend label)
    P = ("FFFFCC", "Nur P (PO4+Pges)")
    S = ("FFDDBB", "Nur S (SO4+Sges)")
    N = ("FFCCFF", "N+TC (TOC+IC)")
    TOC_IC = ("FFCCCC", "TOC + IC")
    IC_ICP = ("CCE5FF", "IC + ICP")
    ALL = ("CCFFCC", "Alle Gruppen")
    PH_LF_TIT = ("E6CCFF", "Nur pH-LF-TIT")
    DEFAULT = ("FFFFFF", "")

    @property
    def hex(self) -> str:
        return self.value[0]

    @property
    def label(self) -> str:
        return self.value[1]


# legend order as printed below the remeasurement table
LEGEND: tuple[RowColour, ...] = (
    RowColour.P, RowColour.S, RowColour.N, RowColour.TOC_IC,
    RowColour.IC_ICP, RowColour.ALL, RowColour.PH_LF_TIT,
)

_PRIORITY: tuple[tuple[ChemSet, RowColour], ...] = (
    (ChemSet.P, RowColour.P),
    (ChemSet.S, RowColour.S),
    (ChemSet.N, RowColour.N),
)


def resolve_row_colour(active: Iterable[str]) -> RowColour:
    """
    Colour of a report row from its active base parameters.

    Order (first match wins):
      1-3) every active parameter belongs to the P, S or N set
      4)   only pH-LF-TIT parameters among the device groups
      5)   TOC + IC
      6)   IC + ICP-OES
      7)   TOC + IC + ICP-OES
    Parameters classified as Sonstige do not take part in rules 4-7.
    """
    params = list(active)
    if not params:
        return RowColour.DEFAULT

    for chem_set, colour in _PRIORITY:
        if all(chem_set.matches(p) for p in params):
            return colour

    groups = {classify(p) for p in params}
    has_ph = DeviceGroup.PH_LF_TIT in groups
    has_toc = DeviceGroup.TOC in groups
    has_ic = DeviceGroup.IC in groups
    has_icp = DeviceGroup.ICP_OES in groups

    if has_ph and not (has_toc or has_ic or has_icp):
        return RowColour.PH_LF_TIT
    if has_toc and has_ic and not has_icp and not has_ph:
        return RowColour.TOC_IC
    if has_ic and has_icp and not has_toc and not has_ph:
        return RowColour.IC_ICP
    if has_toc and has_ic and has_icp:
        return RowColour.ALL
    return RowColour.DEFAULT


def is_cell_active(record: LabRecord, active: Iterable[str], header: str) -> bool:
    """Open for a new value: parameter selected AND the source column has a value."""
    return base_name(header) in set(active) and record.has_value(header)


# ---------- report assembly ----------
@dataclass(frozen=True)
class ReportColumn:
    name: str
    group: DeviceGroup
    base: str


@dataclass(frozen=True)
class ReportCell:
    value: str
    active: bool


@dataclass(frozen=True)
class ReportRow:
    record: LabRecord
    colour: RowColour
    cells: tuple[ReportCell, ...]

    @property
    def repeat_label(self) -> str:
        return "2" if self.record.is_repeat else "1"


@dataclass(frozen=True)
class Report:
    columns: tuple[ReportColumn, ...]
    rows: tuple[ReportRow, ...]

    @property
    def is_empty(self) -> bool:
        return not self.rows or not self.columns

    def to_frame(self) -> pd.DataFrame:
        """Screen view: original values, one line per selected sample."""
        cols = ["Serie", "Probe", "Wdh", *(c.name for c in self.columns), "Farbe"]
        data = [
            [r.record.series_id, r.record.sample_id, r.repeat_label, *(c.value for c in r.cells), r.colour.name]
            for r in self.rows
        ]
        return pd.DataFrame(data, columns=cols)


def report_columns(headers: Sequence[str]) -> list[ReportColumn]:
    ordered = sorted(relevant_headers(headers), key=group_sort_key)
    return [ReportColumn(name=h, group=classify(h), base=base_name(h)) for h in ordered]


def report_order(records: Iterable[LabRecord]) -> list[LabRecord]:
    return sorted(records, key=lambda r: (natural_key(r.series_id), natural_key(r.sample_id), r.is_repeat))


def build_report(dataset: ParsedDataset, selection: SelectionState) -> Report:
    columns = report_columns(dataset.result_headers)
    picked = [r for r in dataset.data if selection.is_selected(r.id)]
    rows = []
    for rec in report_order(picked):
        active = selection.params(rec.id)
        cells = tuple(
            ReportCell(value=rec.value(c.name), active=is_cell_active(rec, active, c.name))
            for c in columns
        )
        rows.append(ReportRow(record=rec, colour=resolve_row_colour(active), cells=cells))
    _LOG.debug("report: %d row(s) x %d column(s)", len(rows), len(columns))
    return Report(columns=tuple(columns), rows=tuple(rows))


# ---------- sheet layout (format agnostic) ----------
@dataclass(frozen=True)
class CellStyle:
    bold: bool = False
    italic: bool = False
    color: str | None = None            # font colour
    fill: str | None = None             # solid background
    border_bottom: bool = False
    border_right: bool = False
    center: bool = False
    number_format: str | None = None


@dataclass(frozen=True)
class SheetCell:
    value: object = None                # str | float | None; formulas start with "="
    style: CellStyle = field(default_factory=CellStyle)


@dataclass
class SheetLayout:
    name: str
    rows: list[list[SheetCell]]
    column_widths: list[int] = field(default_factory=list)


STYLE_HEADER = CellStyle(bold=True, fill="EEEEEE", border_bottom=True)
STYLE_PLAIN = CellStyle()
STYLE_LABEL = CellStyle(italic=True)
STYLE_INACTIVE = CellStyle(color="FF0000", center=True, border_bottom=True)
STYLE_INPUT = CellStyle(border_bottom=True)
STYLE_FORMULA = CellStyle(color="666666", number_format="0.00%")
STYLE_NOTE = CellStyle(bold=True, color="FF0000", fill="FFFF00")
STYLE_FALLBACK = CellStyle(color="FF0000")
STYLE_REMARK_OK = CellStyle(fill="CCFFCC")
STYLE_REMARK_BAD = CellStyle(fill="FFCCCC")

_FIRST_RESULT_COL = 4        # 1-based; A..C hold series, sample, repeat
_HEADER_LINE = 1
_LINES_PER_ROW = 4           # values, new values, deviation, spacer


def deviation_formula(col_idx: int, old_line: int, new_line: int) -> str:
    col = get_column_letter(col_idx)
    old, new = f"{col}{old_line}", f"{col}{new_line}"
    return f'=IF(ISBLANK({new}),"",({new}-{old})/{old})'


def _source_value(raw: str):
    num = parse_german_float(raw)
    return raw if math.isnan(num) else num


def build_remeasurement_sheet(report: Report) -> SheetLayout:
    header = [SheetCell(h, STYLE_HEADER) for h in ("Serie", "Probe", "Wdh.")]
    header += [SheetCell(c.name, STYLE_HEADER) for c in report.columns]
    rows: list[list[SheetCell]] = [header]

    for k, row in enumerate(report.rows):
        old_line = _HEADER_LINE + 1 + k * _LINES_PER_ROW
        new_line = old_line + 1
        fill = CellStyle(fill=row.colour.hex)

        values = [SheetCell(row.record.series_id, fill), SheetCell(row.record.sample_id, fill),
                  SheetCell(row.repeat_label, fill)]
        values += [SheetCell(_source_value(cell.value), fill) for cell in row.cells]

        inputs = [SheetCell(None, STYLE_PLAIN), SheetCell("Neu:", STYLE_LABEL), SheetCell(None, STYLE_PLAIN)]
        inputs += [SheetCell(None, STYLE_INPUT) if cell.active else SheetCell(INACTIVE_MARK, STYLE_INACTIVE)
                   for cell in row.cells]

        deviations = [SheetCell(None, STYLE_PLAIN), SheetCell("Abw. %:", STYLE_LABEL), SheetCell(None, STYLE_PLAIN)]
        deviations += [SheetCell(deviation_formula(_FIRST_RESULT_COL + i, old_line, new_line), STYLE_FORMULA)
                       for i in range(len(report.columns))]

        rows.extend([values, inputs, deviations, []])

    rows.append([])
    rows.extend(_footer_lines())
    rows.append([])
    rows.append([SheetCell(HANDOFF_NOTE, STYLE_NOTE)])

    widths = [10, 15, 5] + [12] * len(report.columns)
    return SheetLayout(name=SHEET_REMEASUREMENT, rows=rows, column_widths=widths)


def _footer_lines() -> list[list[SheetCell]]:
    """Colour legend in column A, sign-off table per device group in columns D-F."""
    legend = [SheetCell("Legende Farbmarkierung:", CellStyle(bold=True))]
    legend += [SheetCell(c.label, CellStyle(fill=c.hex)) for c in LEGEND]

    table = [[SheetCell(h, STYLE_HEADER) for h in ("Gerätegruppe", "Erledigt von", "Datum")]]
    for g in GROUP_ORDER:
        if g is DeviceGroup.SONSTIGE:
            continue
        table.append([SheetCell(g.value, CellStyle(border_right=True)),
                      SheetCell("", STYLE_INPUT), SheetCell("", STYLE_INPUT)])

    lines = []
    for i in range(max(len(legend), len(table))):
        line = [legend[i] if i < len(legend) else SheetCell(""), SheetCell(""), SheetCell("")]
        if i < len(table):
            line.extend(table[i])
        lines.append(line)
    return lines


def build_ion_balance_sheet(results: Sequence[IonBalanceResult], comments: Mapping[str, str]) -> SheetLayout:
    rows = [[SheetCell(h, STYLE_HEADER) for h in TABLE_COLUMNS]]
    cond_idx = TABLE_COLUMNS.index("Leitfähigkeit")
    remark_idx = TABLE_COLUMNS.index("Bemerkung")
    for res in results:
        line = [SheetCell(v, STYLE_PLAIN) for v in res.table_row(effective_comment(comments, res))]
        if res.conductivity_fallback:
            line[cond_idx] = SheetCell(line[cond_idx].value, STYLE_FALLBACK)
        if res.remark:
            style = STYLE_REMARK_OK if res.remark == REMARK_OK else STYLE_REMARK_BAD
            line[remark_idx] = SheetCell(res.remark, style)
        rows.append(line)
    return SheetLayout(name=SHEET_ION_BALANCE, rows=rows)


def build_workbook_layout(report: Report, results: Sequence[IonBalanceResult],
                          comments: Mapping[str, str]) -> list[SheetLayout]:
    return [build_remeasurement_sheet(report), build_ion_balance_sheet(results, comments)]


# ---------- writers ----------
_THIN = Side(style="thin")


def _apply_style(cell, style: CellStyle) -> None:
    cell.font = Font(name="Arial", bold=style.bold, italic=style.italic, color=style.color)
    if style.fill:
        cell.fill = PatternFill(start_color=style.fill, end_color=style.fill, fill_type="solid")
    if style.border_bottom or style.border_right:
        cell.border = Border(bottom=_THIN if style.border_bottom else Side(),
                             right=_THIN if style.border_right else Side())
    if style.center:
        cell.alignment = Alignment(horizontal="center")
    if style.number_format:
        cell.number_format = style.number_format


def write_workbook(sheets: Sequence[SheetLayout], out_xlsx: Path, title: str) -> None:
    out_xlsx.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    wb.remove(wb.active)
    for layout in sheets:
        ws = wb.create_sheet(layout.name)
        for r, line in enumerate(layout.rows, start=1):
            for c, sc in enumerate(line, start=1):
                value = None if sc.value == "" else sc.value
                cell = ws.cell(row=r, column=c, value=value)
                _apply_style(cell, sc.style)
        for c, width in enumerate(layout.column_widths, start=1):
            ws.column_dimensions[get_column_letter(c)].width = width
    wb.save(out_xlsx)
    print(f"[OK] wrote report: {title} → {out_xlsx}")


def write_ion_balance_csv(df_out: pd.DataFrame, out_csv: Path, title: str) -> None:
    """Semicolon separated, every field quoted, UTF-8 with BOM (opens directly in Excel)."""
    out_csv.parent.mkdir(parents=True, exist_ok=True)
    df_out.to_csv(out_csv, sep=";", index=False, quoting=csv.QUOTE_ALL,
                  encoding="utf-8-sig", lineterminator="\n")
    print(f"[OK] wrote report: {title} → {out_csv}")


def read_ion_balance_csv(path: Path) -> pd.DataFrame:
    return pd.read_csv(path, sep=";", dtype=str, keep_default_na=False, encoding="utf-8-sig")


def write_raw_data_csv(dataset: ParsedDataset, out_csv: Path, title: str) -> None:
    out_csv.parent.mkdir(parents=True, exist_ok=True)
    dataset.to_frame().to_csv(out_csv, sep=";", index=False, encoding="utf-8-sig")
    print(f"[OK] wrote report: {title} → {out_csv}")


def write_report(dataset: ParsedDataset,
                 selection: SelectionState,
                 results: Sequence[IonBalanceResult],
                 comments: Mapping[str, str],
                 out_dir: Path,
                 stem: str,
                 fmt: ReportFormat = "both") -> list[Path]:
    """
    Write export file(s) in the requested format.
    - "csv":  Ionenbilanz_<stem>_export.csv (comment map as is)
    - "xlsx": Nachmessung_<stem>.xlsx (remeasurement sheet + ion-balance sheet)
    """
    written: list[Path] = []
    if fmt in ("csv", "both"):
        out_csv = out_dir / f"Ionenbilanz_{stem}_export.csv"
        write_ion_balance_csv(ion_balance_frame(results, comments), out_csv, f"{stem} Ionenbilanz")
        written.append(out_csv)
    if fmt in ("xlsx", "both"):
        report = build_report(dataset, selection)
        if report.is_empty:
            _LOG.info("%s: no selected samples; remeasurement sheet holds only header and legend", stem)
        out_xlsx = out_dir / f"Nachmessung_{stem}.xlsx"
        write_workbook(build_workbook_layout(report, results, comments), out_xlsx, f"{stem} Nachmessung")
        written.append(out_xlsx)
    return written
