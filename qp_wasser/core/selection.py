# qp_wasser/core/selection.py
"""
Which samples and which base parameters go into the report.

``SelectionState`` is immutable: every operation returns a new state, so a
caller can keep the previous one for undo and tests can compare values.
"""
from __future__ import annotations
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence
import logging

from .classify import ChemSet, DeviceGroup, base_name, classify, display_name, group_sort_key, relevant_headers
from .model import LabRecord, ParsedDataset

_LOG = logging.getLogger(__name__)


def seed_params(record: LabRecord, headers: Sequence[str]) -> frozenset[str]:
    """Every base parameter with at least one non-empty value in the row."""
    return frozenset(base_name(h) for h in headers if record.has_value(h))


def available_params(record: LabRecord, headers: Sequence[str]) -> list[str]:
    """Selectable base parameters of a row, ordered by device group then name."""
    found = {base_name(h) for h in relevant_headers(headers) if record.has_value(h)}
    return sorted(found, key=group_sort_key)


@dataclass(frozen=True)
class SelectionState:
    selected_row_ids: frozenset[str]
    row_params: Mapping[str, frozenset[str]]

    def __post_init__(self):
        object.__setattr__(self, "selected_row_ids", frozenset(self.selected_row_ids))
        object.__setattr__(self, "row_params",
                           MappingProxyType({k: frozenset(v) for k, v in self.row_params.items()}))

    # ----- construction -----
    @classmethod
    def initial(cls, dataset: ParsedDataset) -> "SelectionState":
        """No rows selected; parameters pre-seeded per row so a later row toggle is ready to use."""
        return cls(
            selected_row_ids=frozenset(),
            row_params={r.id: seed_params(r, dataset.result_headers) for r in dataset.data},
        )

    # ----- queries -----
    def is_selected(self, row_id: str) -> bool:
        return row_id in self.selected_row_ids

    def params(self, row_id: str) -> frozenset[str]:
        return self.row_params.get(row_id, frozenset())

    def all_selected(self) -> bool:
        return len(self.selected_row_ids) == len(self.row_params)

    def _check(self, row_id: str) -> None:
        if row_id not in self.row_params:
            raise KeyError(f"unknown row id: {row_id}")

    def _with_params(self, row_id: str, params: Iterable[str]) -> "SelectionState":
        updated = dict(self.row_params)
        updated[row_id] = frozenset(params)
        return SelectionState(self.selected_row_ids, updated)

    # ----- rows -----
    def toggle_row(self, row_id: str) -> "SelectionState":
        self._check(row_id)
        return SelectionState(self.selected_row_ids ^ {row_id}, self.row_params)

    def toggle_all_rows(self) -> "SelectionState":
        if self.all_selected():
            return SelectionState(frozenset(), self.row_params)
        return SelectionState(frozenset(self.row_params), self.row_params)

    # ----- parameters -----
    def toggle_param(self, row_id: str, param: str) -> "SelectionState":
        self._check(row_id)
        return self._with_params(row_id, self.params(row_id) ^ {param})

    def _toggle_block(self, row_id: str, block: Sequence[str]) -> "SelectionState":
        current = self.params(row_id)
        if all(p in current for p in block):
            return self._with_params(row_id, current - set(block))
        return self._with_params(row_id, current | set(block))

    def toggle_all_params(self, row_id: str, available: Sequence[str]) -> "SelectionState":
        """All available on -> all off, otherwise all on."""
        self._check(row_id)
        return self._toggle_block(row_id, available)

    def toggle_group(self, row_id: str, group: DeviceGroup, available: Sequence[str]) -> "SelectionState":
        self._check(row_id)
        in_group = [p for p in available if classify(p) is group]
        if not in_group:
            return self
        return self._toggle_block(row_id, in_group)

    def apply_chem_set(self, row_id: str, chem_set: ChemSet | str, available: Sequence[str]) -> "SelectionState":
        """Replace the row's parameters with exactly the set's parameters (others are dropped)."""
        self._check(row_id)
        chem_set = ChemSet(chem_set)
        targets = [p for p in available if chem_set.matches(p)]
        if not targets:
            _LOG.debug("%s: no %s parameters available, selection unchanged", row_id, chem_set.value)
            return self
        return self._with_params(row_id, targets)

    # ----- serialization (sets as sorted arrays) -----
    def to_dict(self) -> dict:
        return {
            "selectedRowIds": sorted(self.selected_row_ids),
            "rowParams": {k: sorted(v) for k, v in self.row_params.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "SelectionState":
        return cls(
            selected_row_ids=frozenset(data.get("selectedRowIds", [])),
            row_params={k: frozenset(v) for k, v in (data.get("rowParams") or {}).items()},
        )


def groups_in_row(available: Sequence[str]) -> list[DeviceGroup]:
    """Device groups with at least one available parameter, in display order."""
    return sorted({classify(p) for p in available}, key=lambda g: g.rank)


def describe_params(available: Sequence[str], active: Iterable[str]) -> str:
    """
    One-line overview of a row's parameters per device group, e.g.
    ``"TIT: [pH] | IC: [Ca] Cl"`` (brackets mark active parameters).
    """
    active = set(active)
    parts = []
    for g in groups_in_row(available):
        labels = [f"[{display_name(p)}]" if p in active else display_name(p)
                  for p in available if classify(p) is g]
        parts.append(f"{g.short_label}: {' '.join(labels)}")
    return " | ".join(parts)
