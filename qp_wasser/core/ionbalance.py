# qp_wasser/core/ionbalance.py
"""Ion-balance (IB) and conductivity (LF) plausibility checks per sample."""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence
import logging
import math
import pandas as pd

from .model import LabRecord, ParsedDataset
from .normalize import format_german_float, natural_key, parse_german_float, round_half_up

_LOG = logging.getLogger(__name__)

IB_RANGE: tuple[float, float] = (0.9, 1.1)

REMARK_OK = "ok"
REMARK_IB_OK_LF_NOT = "IB ok, LF nicht"
REMARK_IB_NOT_LF_OK = "IB nicht ok ; LF ok"
REMARK_BOTH_NOT = "IB nicht ok + LF nicht ok"
REMARK_IB_ONLY_OK = "IB ok"
REMARK_IB_ONLY_NOT = "IB nicht ok"

COMMENT_CORG_20 = "Corg>20"
COMMENT_CORG_10_LF_50 = "Corg>10 LTF<50"
COMMENT_IDEAL_SOLUTION = "gilt nur für Ideal verdünnte Lösungen"
COMMENT_LF_30 = "Leitfähigkeit < 30"

COMMENT_OPTIONS: tuple[str, ...] = (
    "",
    COMMENT_CORG_20,
    "NM",
    "Abweichung im Rahmen der NWG",
    COMMENT_CORG_10_LF_50,
    "durch Nachmessung bestätigt",
    "Grenzfall",
    "Probe leer",
    "keine Alkalinität bestimmt bei pH > 6",
    COMMENT_LF_30,
    COMMENT_IDEAL_SOLUTION,
    "anderer Grund",
)

TABLE_COLUMNS: tuple[str, ...] = (
    "Probenkennung",
    "WDH",
    "Alkalinität",
    "Corg berechnet",
    "Leitfähigkeit",
    "Quotient ELF_eu_korr",
    "Quotient Kationen Anionen NFV",
    "Theo elekt Leit (EU) korr",
    "Q. LF/Theo (ber.)",
    "Bemerkung",
    "Kommentar",
)


# ---------- semantic columns ----------
class ColumnRole(str, Enum):
    ALKALINITY = "alkalinity"
    CORG = "corg"
    COND_PRIMARY = "cond_primary"
    COND_FALLBACK = "cond_fallback"
    QUOTIENT_ELF = "quotient_elf"
    QUOTIENT_IONS = "quotient_ions"
    THEO_COND = "theo_cond"


ALKALINITY_PREFIX = "alkalinität-gran"
EXACT_COLUMNS: Mapping[ColumnRole, str] = MappingProxyType({
    ColumnRole.CORG: "Corg berechnet",
    ColumnRole.COND_PRIMARY: "LFLFLFM3.1",
    ColumnRole.COND_FALLBACK: "LFLFLFM1.3",
    ColumnRole.QUOTIENT_ELF: "Quotient ELF_eu_korr",
    ColumnRole.QUOTIENT_IONS: "Quotient Kationen Anionen NFV",
    ColumnRole.THEO_COND: "Theo elekt Leit (EU) korr",
})


class ColumnNotFoundError(KeyError):
    def __init__(self, role: ColumnRole):
        super().__init__(f"column not found: {role.value}")
        self.role = role


@dataclass(frozen=True)
class SemanticColumns:
    """Resolved header name per semantic role (missing roles are absent)."""
    columns: Mapping[ColumnRole, str]

    @classmethod
    def resolve(cls, headers: Sequence[str]) -> "SemanticColumns":
        found: dict[ColumnRole, str] = {}
        alk = next((h for h in headers if h.lower().startswith(ALKALINITY_PREFIX)), None)
        if alk is not None:
            found[ColumnRole.ALKALINITY] = alk
        for role, name in EXACT_COLUMNS.items():
            if name in headers:
                found[role] = name
        missing = [r.value for r in ColumnRole if r not in found]
        if missing:
            _LOG.debug("semantic columns not present: %s", ", ".join(missing))
        return cls(MappingProxyType(found))

    def get(self, role: ColumnRole) -> str | None:
        return self.columns.get(role)

    def require(self, role: ColumnRole) -> str:
        try:
            return self.columns[role]
        except KeyError:
            raise ColumnNotFoundError(role) from None

    def value(self, record: LabRecord, role: ColumnRole) -> str:
        col = self.get(role)
        return record.value(col) if col is not None else ""


# ---------- rules ----------
def ion_balance_ok(rounded_quotient: float) -> bool:
    lo, hi = IB_RANGE
    return not math.isnan(rounded_quotient) and lo <= rounded_quotient <= hi


def conductivity_quotient(measured: float, theoretical: float) -> float:
    if math.isnan(measured) or math.isnan(theoretical) or theoretical == 0:
        return math.nan
    return measured / theoretical


def lf_tolerance(measured: float) -> tuple[float, float]:
    """Allowed LF/theo quotient range, widening for low conductivities."""
    if measured > 20:
        return 0.9, 1.1
    if measured >= 10:
        return 0.8, 1.2
    return 0.7, 1.3


def conductivity_ok(measured: float, quotient: float) -> bool:
    if math.isnan(measured) or math.isnan(quotient):
        return False
    lo, hi = lf_tolerance(measured)
    return lo <= quotient <= hi


def derive_remark(has_ib: bool, ib_ok: bool, has_lf: bool, lf_ok: bool) -> str:
    if has_ib and has_lf:
        if ib_ok and lf_ok:
            return REMARK_OK
        if ib_ok:
            return REMARK_IB_OK_LF_NOT
        if lf_ok:
            return REMARK_IB_NOT_LF_OK
        return REMARK_BOTH_NOT
    if has_ib:
        return REMARK_IB_ONLY_OK if ib_ok else REMARK_IB_ONLY_NOT
    return ""


def derive_auto_comment(ib_ok: bool, lf_ok: bool, corg: float, conductivity: float) -> str:
    """
    Suggested comment when a deviation is present (IB or LF not ok; missing data counts as not ok).

    Order:
      1) Corg > 20
      2) Corg > 10 and LF < 50
      3) LF > 300 with LF check failed
      4) LF < 30
    """
    if ib_ok and lf_ok:
        return ""
    has_corg = not math.isnan(corg)
    has_cond = not math.isnan(conductivity)
    if has_corg and corg > 20:
        return COMMENT_CORG_20
    if has_corg and corg > 10 and has_cond and conductivity < 50:
        return COMMENT_CORG_10_LF_50
    if has_cond and conductivity > 300 and not lf_ok:
        return COMMENT_IDEAL_SOLUTION
    if has_cond and conductivity < 30:
        return COMMENT_LF_30
    return ""


# ---------- per-row result ----------
@dataclass(frozen=True)
class IonBalanceResult:
    row_id: str
    sample_id: str
    is_repeat: bool
    alkalinity: str
    corg: str
    conductivity: str
    conductivity_fallback: bool      # value taken from LFLFLFM1.3
    quotient_elf: float
    quotient_ions: float             # rounded to 2 places
    theo_conductivity: float
    conductivity_quotient: float
    ib_ok: bool
    lf_ok: bool
    remark: str
    auto_comment: str

    @property
    def has_ib_data(self) -> bool:
        return not math.isnan(self.quotient_ions)

    @property
    def has_lf_data(self) -> bool:
        return not math.isnan(self.conductivity_quotient)

    @property
    def deviation(self) -> bool:
        return not (self.ib_ok and self.lf_ok)

    def table_row(self, comment: str = "") -> list[str]:
        """Formatted line of the diagnostic table (TABLE_COLUMNS order)."""
        return [
            self.sample_id,
            "ja" if self.is_repeat else "nein",
            self.alkalinity,
            self.corg,
            self.conductivity,
            format_german_float(self.quotient_elf, 2),
            format_german_float(self.quotient_ions, 2),
            format_german_float(self.theo_conductivity, 1),
            format_german_float(self.conductivity_quotient, 2),
            self.remark,
            comment,
        ]


def _select_conductivity(record: LabRecord, cols: SemanticColumns) -> tuple[str, bool]:
    primary = cols.value(record, ColumnRole.COND_PRIMARY)
    if primary.strip():
        return primary, False
    fallback = cols.value(record, ColumnRole.COND_FALLBACK)
    if fallback.strip():
        return fallback, True
    return "", False


def evaluate_row(record: LabRecord, cols: SemanticColumns) -> IonBalanceResult:
    corg_raw = cols.value(record, ColumnRole.CORG)
    cond_raw, fallback = _select_conductivity(record, cols)

    corg = parse_german_float(corg_raw)
    cond = parse_german_float(cond_raw)
    q_elf = parse_german_float(cols.value(record, ColumnRole.QUOTIENT_ELF))
    q_ions = round_half_up(parse_german_float(cols.value(record, ColumnRole.QUOTIENT_IONS)), 2)
    theo = parse_german_float(cols.value(record, ColumnRole.THEO_COND))

    ib_ok = ion_balance_ok(q_ions)
    cond_q = conductivity_quotient(cond, theo)
    lf_ok = conductivity_ok(cond, cond_q)

    remark = auto = ""
    # no remark or suggestion for repeat measurements
    if not record.is_repeat:
        remark = derive_remark(not math.isnan(q_ions), ib_ok, not math.isnan(cond_q), lf_ok)
        auto = derive_auto_comment(ib_ok, lf_ok, corg, cond)
    _LOG.debug("%s (%s): IB=%s LF=%s remark=%r auto=%r",
               record.sample_id, record.id, ib_ok, lf_ok, remark, auto)

    return IonBalanceResult(
        row_id=record.id,
        sample_id=record.sample_id,
        is_repeat=record.is_repeat,
        alkalinity=cols.value(record, ColumnRole.ALKALINITY),
        corg=corg_raw,
        conductivity=cond_raw,
        conductivity_fallback=fallback,
        quotient_elf=q_elf,
        quotient_ions=q_ions,
        theo_conductivity=theo,
        conductivity_quotient=cond_q,
        ib_ok=ib_ok,
        lf_ok=lf_ok,
        remark=remark,
        auto_comment=auto,
    )


# ---------- dataset level ----------
def ion_balance_order(records: Iterable[LabRecord]) -> list[LabRecord]:
    """Sample id (numeric-aware) first, originals before repeats."""
    return sorted(records, key=lambda r: (natural_key(r.sample_id), r.is_repeat))


def analyse(dataset: ParsedDataset) -> list[IonBalanceResult]:
    cols = SemanticColumns.resolve(dataset.result_headers)
    return [evaluate_row(r, cols) for r in ion_balance_order(dataset.data)]


def seed_comments(comments: Mapping[str, str], results: Iterable[IonBalanceResult]) -> dict[str, str]:
    """New comment map with auto-comments filled in where no comment exists yet."""
    out = dict(comments)
    for res in results:
        if res.auto_comment and not out.get(res.row_id):
            out[res.row_id] = res.auto_comment
    return out


def effective_comment(comments: Mapping[str, str], result: IonBalanceResult) -> str:
    return comments.get(result.row_id) or result.auto_comment


def ion_balance_frame(results: Sequence[IonBalanceResult], comments: Mapping[str, str],
                      fallback_to_auto: bool = False) -> pd.DataFrame:
    """
    Diagnostic table as strings.
    ``fallback_to_auto`` uses a fresh auto-comment where no manual comment exists
    (workbook export); the CSV export writes the comment map as is.
    """
    rows = []
    for res in results:
        comment = effective_comment(comments, res) if fallback_to_auto else comments.get(res.row_id, "")
        rows.append(res.table_row(comment))
    return pd.DataFrame(rows, columns=list(TABLE_COLUMNS), dtype=str)
