# qp_wasser/main.py
from __future__ import annotations
from pathlib import Path
import logging
import sys
import yaml

from qp_wasser.core.pipeline import run_pipeline
from qp_wasser.utils.detect import discover_inputs


def load_config(cfg_path: Path) -> dict:
    with cfg_path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def main(argv: list[str] | None = None):
    argv = sys.argv[1:] if argv is None else argv

    # ---------- config ----------
    here = Path(__file__).resolve().parent
    cfg = load_config(Path(argv[0]) if argv else here / "config.yaml")

    log_cfg = cfg.get("logging", {}) or {}
    logging.basicConfig(level=str(log_cfg.get("level", "WARNING")).upper(),
                        format="%(levelname)s %(name)s: %(message)s")
    verbose = bool(log_cfg.get("verbose", True))

    in_cfg = cfg.get("input", {}) or {}
    in_path = Path(in_cfg.get("path", ".")).resolve()
    recurse = bool(in_cfg.get("recurse", False))
    out_root = Path((cfg.get("output", {}) or {}).get("root", "out")).resolve()
    out_root.mkdir(parents=True, exist_ok=True)

    if verbose:
        print(f"[cfg] input={in_path} (recurse={recurse})")
        print(f"[cfg] output={out_root}")

    # ---------- discover ----------
    detected = discover_inputs(in_path, recurse=recurse)
    if not detected:
        print(f"[INFO] No CSV inputs found under: {in_path}")
        sys.exit(0)
    if verbose:
        print(f"[detector] found {len(detected)} CSV file(s)")

    # ---------- one report set per file ----------
    n_ok = 0
    for item in detected:
        if verbose:
            print(f"  [load] {item.kind:4} {item.path.name}")
        try:
            written = run_pipeline(item.path, cfg, out_root)
        except (OSError, ValueError) as e:
            print(f"[WARN] processing failed for {item.path.name}: {e}")
            continue
        if written:
            n_ok += 1

    if verbose:
        print(f"[summary] processed {n_ok} of {len(detected)} file(s)")


if __name__ == "__main__":
    main()
