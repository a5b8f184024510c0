# qp_wasser/core/classify.py
from __future__ import annotations
from enum import Enum
import re
from typing import Iterable

from .normalize import german_collation_key


class DeviceGroup(str, Enum):
    PH_LF_TIT = "pH-LF-TIT"
    TOC = "TOC"
    IC = "IC"
    ICP_OES = "ICP-OES"
    SONSTIGE = "Sonstige"

    @property
    def rank(self) -> int:
        return GROUP_ORDER.index(self)

    @property
    def short_label(self) -> str:
        if self is DeviceGroup.ICP_OES:
            return "ICP"
        if self is DeviceGroup.PH_LF_TIT:
            return "TIT"
        return self.value


class ChemSet(str, Enum):
    """Element-specific parameter sets (phosphorus, sulphur, nitrogen)."""
    P = "P"
    S = "S"
    N = "N"

    @property
    def keywords(self) -> tuple[str, ...]:
        return _CHEM_SET_KEYWORDS[self]

    def matches(self, name: str) -> bool:
        u = name.upper()
        return any(k in u for k in self.keywords)


_CHEM_SET_KEYWORDS: dict[ChemSet, tuple[str, ...]] = {
    ChemSet.P: ("PPO4IC", "PPGESICP"),
    ChemSet.S: ("SSO4IC", "SSGESICP"),
    ChemSet.N: ("NNGESTOC", "NNH4IC", "NNO2IC", "NNO3IC", "CGES"),
}

GROUP_ORDER: tuple[DeviceGroup, ...] = (
    DeviceGroup.PH_LF_TIT,
    DeviceGroup.TOC,
    DeviceGroup.IC,
    DeviceGroup.ICP_OES,
    DeviceGroup.SONSTIGE,
)

_PH_LF_TIT_KEYWORDS: tuple[str, ...] = ("TIT", "M1.", "M3.", "M8.", "HH+PHM", "LFLFM")
_SUFFIX = re.compile(r"\d+\.\d+$")
_DISPLAY_PREFIX = re.compile(r"^(TIT|ICP|IC|TOC)", re.IGNORECASE)
_RELEVANT = re.compile(r"(ICP|IC|TOC|TIT|M\d+\.|HH\+PHM|LFLFM)")


def classify(name: str) -> DeviceGroup:
    """
    Device group of a header or base-parameter name.

    Order (first match wins):
      1) pH/LF/titration keywords (TIT, M1., M3., M8., HH+PHM, LFLFM)
      2) TOC
      3) ICP  -- must precede the bare IC test, every ICP name contains "IC"
      4) IC
      5) Sonstige
    """
    h = (name or "").upper()
    if any(k in h for k in _PH_LF_TIT_KEYWORDS):
        return DeviceGroup.PH_LF_TIT
    if "TOC" in h:
        return DeviceGroup.TOC
    if "ICP" in h:
        return DeviceGroup.ICP_OES
    if "IC" in h:
        return DeviceGroup.IC
    return DeviceGroup.SONSTIGE


def base_name(header: str) -> str:
    """Strip the trailing run suffix ("ICCa2.1" -> "ICCa"); idempotent."""
    return _SUFFIX.sub("", header)


def display_name(name: str) -> str:
    """Cosmetic label without the device prefix; never used for matching."""
    return _DISPLAY_PREFIX.sub("", name)


def is_relevant(header: str) -> bool:
    return _RELEVANT.search(header.upper()) is not None


def relevant_headers(headers: Iterable[str]) -> list[str]:
    return [h for h in headers if is_relevant(h)]


def group_sort_key(name: str) -> tuple:
    """Device-group rank first, then alphabetical; shared by selection and report columns."""
    return classify(name).rank, german_collation_key(name)

