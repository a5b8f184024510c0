# qp_wasser/core/model.py
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Mapping
import pandas as pd


@dataclass(frozen=True)
class LabRecord:
    id: str                        # "row-<raw index>", stable per ingested file
    series_id: str                 # column 0
    sample_id: str                 # column 1 (Probenkennung)
    is_repeat: bool                # column 3 == "2"
    raw_repeat_value: str          # trimmed column 3 text
    results: Mapping[str, str]     # header -> raw value, keys == ParsedDataset.result_headers

    def __post_init__(self):
        # freeze the mapping so downstream consumers cannot mutate a record
        if not isinstance(self.results, MappingProxyType):
            object.__setattr__(self, "results", MappingProxyType(dict(self.results)))

    def value(self, header: str) -> str:
        return self.results.get(header, "")

    def has_value(self, header: str) -> bool:
        return self.value(header).strip() != ""


@dataclass(frozen=True)
class ParsedDataset:
    file_name: str
    import_timestamp: datetime
    result_headers: tuple[str, ...]         # canonical order, German collation
    data: tuple[LabRecord, ...]             # file row order
    _index: Mapping[str, LabRecord] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "result_headers", tuple(self.result_headers))
        object.__setattr__(self, "data", tuple(self.data))
        object.__setattr__(self, "_index", MappingProxyType({r.id: r for r in self.data}))

    @property
    def row_count(self) -> int:
        return len(self.data)

    @property
    def row_ids(self) -> tuple[str, ...]:
        return tuple(r.id for r in self.data)

    def record(self, row_id: str) -> LabRecord:
        try:
            return self._index[row_id]
        except KeyError:
            raise KeyError(f"unknown row id: {row_id}") from None

    def to_frame(self) -> pd.DataFrame:
        """Raw-data table: identifiers, repeat marker, then every result column in canonical order."""
        cols = ["Serie", "Probenkennung", "Wdh", *self.result_headers]
        rows = [
            [r.series_id, r.sample_id, "Ja" if r.is_repeat else "", *(r.value(h) for h in self.result_headers)]
            for r in self.data
        ]
        return pd.DataFrame(rows, columns=cols)
