# qp_wasser/core/plotting.py
from __future__ import annotations
from pathlib import Path
from typing import Sequence
import matplotlib.pyplot as plt
import pandas as pd

from .ionbalance import IB_RANGE, IonBalanceResult
from .normalize import to_float


def _plot_frame(results: Sequence[IonBalanceResult]) -> pd.DataFrame:
    df = pd.DataFrame({
        "sample": [r.sample_id + (" (W)" if r.is_repeat else "") for r in results],
        "ib": [r.quotient_ions for r in results],
        "lf": [r.conductivity_quotient for r in results],
    })
    df["ib"] = to_float(df["ib"])
    df["lf"] = to_float(df["lf"])
    return df


def save_ion_balance_plot(results: Sequence[IonBalanceResult], out_dir: Path, title: str,
                          file_name: str = "ionenbilanz.png") -> Path | None:
    """Ion quotient and LF/theo quotient per sample, tolerance band [0.9, 1.1] shaded."""
    if not results:
        return None
    df = _plot_frame(results)
    if df["ib"].notna().sum() == 0 and df["lf"].notna().sum() == 0:
        print(f"[INFO] {title}: no quotient data; skipping ion-balance plot.")
        return None
    out_dir.mkdir(parents=True, exist_ok=True)

    x = range(len(df))
    plt.figure(figsize=(max(8, 0.35 * len(df)), 5))
    plt.axhspan(IB_RANGE[0], IB_RANGE[1], color="green", alpha=0.1, label="Toleranz IB")
    plt.scatter(x, df["ib"], marker="o", label="Q. Kationen/Anionen")
    plt.scatter(x, df["lf"], marker="x", label="Q. LF/Theo")
    plt.xticks(list(x), df["sample"], rotation=90, fontsize=7)
    plt.ylabel("Quotient [-]")
    plt.title(f"{title}: Ionenbilanz")
    plt.grid(True, alpha=0.3)
    plt.legend(fontsize=8, loc="upper center", bbox_to_anchor=(0.5, -0.25), ncol=3, frameon=False)
    plt.tight_layout()
    out_path = out_dir / file_name
    plt.savefig(out_path, dpi=160)
    plt.close()
    print(f"[OK] {title}: ion-balance plot → {out_path}")
    return out_path
