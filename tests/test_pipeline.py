from pathlib import Path
from unittest import mock
import tempfile
import unittest

from openpyxl import load_workbook

from qp_wasser.core.pipeline import apply_config_selection, run_pipeline
from qp_wasser.core.plotting import save_ion_balance_plot
from qp_wasser.core.reports import RowColour, SHEET_REMEASUREMENT
from qp_wasser.core.session import Session
from qp_wasser.main import main
from qp_wasser.utils.detect import discover_inputs, is_lab_export

from lab_fixtures import sample_csv_text


def _cfg(**reports) -> dict:
    return {
        "input": {"encoding": "latin-1"},
        "selection": {"select_all_rows": True, "chem_set": None},
        "reports": {"format": "both", "raw_data": False, "plots": False, **reports},
        "persistence": {"url": None},
        "logging": {"verbose": False},
    }


def _write_export(folder: Path, name: str = "Serie 12.csv") -> Path:
    path = folder / name
    path.write_bytes(sample_csv_text().encode("latin-1"))
    return path


class ConfigSelectionTests(unittest.TestCase):
    def setUp(self):
        self.session = Session()
        self.session.load_text(sample_csv_text(), "serie12.csv")

    def test_select_all_rows(self):
        sel = apply_config_selection(self.session, {"selection": {"select_all_rows": True}})
        self.assertTrue(sel.all_selected())

    def test_keep_rows_unselected(self):
        sel = apply_config_selection(self.session, {"selection": {"select_all_rows": False}})
        self.assertEqual(frozenset(), sel.selected_row_ids)

    def test_chem_set_from_config(self):
        sel = apply_config_selection(self.session, {"selection": {"select_all_rows": True, "chem_set": "p"}})
        self.assertEqual(frozenset({"PPO4IC", "PPgesICP"}), sel.params("row-3"))
        colours = {r.record.id: r.colour for r in self.session.report().rows}
        self.assertIs(RowColour.P, colours["row-3"])
        # every row with P parameters is narrowed
        self.assertEqual(frozenset({"PPO4IC", "PPgesICP"}), sel.params("row-2"))
        # repeat row has no P parameters: selection unchanged
        self.assertIn("ICCa", sel.params("row-4"))


class RunPipelineTests(unittest.TestCase):
    def test_writes_reports_per_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            src = _write_export(tmp)
            written = run_pipeline(src, _cfg(raw_data=True), tmp / "out")
            names = sorted(p.name for p in written)
            self.assertEqual(["Ionenbilanz_Serie 12_export.csv", "Nachmessung_Serie 12.xlsx",
                              "Rohdaten_Serie 12.csv"], names)
            for p in written:
                self.assertEqual(tmp / "out" / "Serie 12", p.parent)
                self.assertTrue(p.exists())
            ws = load_workbook(tmp / "out" / "Serie 12" / "Nachmessung_Serie 12.xlsx")[SHEET_REMEASUREMENT]
            self.assertEqual(["P2", "P2", "P10"], [ws[f"B{line}"].value for line in (2, 6, 10)])

    def test_plot(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            written = run_pipeline(_write_export(tmp), _cfg(format="csv", plots=True), tmp / "out")
            self.assertIn("ionenbilanz.png", [p.name for p in written])

    def test_unreadable_file_writes_nothing(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            bad = tmp / "leer.csv"
            bad.write_text("nur eine Zeile\n", encoding="latin-1")
            self.assertEqual([], run_pipeline(bad, _cfg(), tmp / "out"))
            self.assertFalse((tmp / "out").exists())

    def test_state_published_when_url_configured(self):
        cfg = _cfg(format="csv")
        cfg["persistence"] = {"url": "https://lab.example.org", "timeout_s": 3}
        with tempfile.TemporaryDirectory() as tmpdir, \
                mock.patch("qp_wasser.core.pipeline.RemoteStateStore") as store_cls:
            tmp = Path(tmpdir)
            run_pipeline(_write_export(tmp), cfg, tmp / "out")
        store_cls.assert_called_once_with("https://lab.example.org", timeout_s=3.0)
        blob = store_cls.return_value.save.call_args.args[0]
        self.assertEqual("Serie 12.csv", blob["parsedData"]["fileName"])
        self.assertEqual(["row-2", "row-3", "row-4"], blob["selection"]["selectedRowIds"])


class PlotTests(unittest.TestCase):
    def test_no_results_no_plot(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            self.assertIsNone(save_ion_balance_plot([], Path(tmpdir), "leer"))


class DetectTests(unittest.TestCase):
    def test_own_exports_are_not_inputs(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            _write_export(tmp, "b.csv")
            _write_export(tmp, "a.CSV")
            _write_export(tmp, "Ionenbilanz_a_export.csv")
            _write_export(tmp, "Rohdaten_a.csv")
            (tmp / "notes.txt").write_text("x")
            sub = tmp / "sub"
            sub.mkdir()
            _write_export(sub, "c.csv")

            flat = [d.path.name for d in discover_inputs(tmp, recurse=False)]
            deep = [d.path.name for d in discover_inputs(tmp, recurse=True)]
            single = discover_inputs(tmp / "b.csv")
            self.assertFalse(is_lab_export(tmp / "Rohdaten_a.csv"))
        self.assertEqual(["a.CSV", "b.csv"], flat)
        self.assertEqual(["a.CSV", "b.csv", "c.csv"], deep)
        self.assertEqual(["b.csv"], [d.path.name for d in single])


class MainTests(unittest.TestCase):
    def test_main_runs_from_config_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            data = tmp / "data"
            data.mkdir()
            _write_export(data)
            cfg_path = tmp / "config.yaml"
            cfg_path.write_text(
                "input:\n"
                f"  path: {data.as_posix()}\n"
                "output:\n"
                f"  root: {(tmp / 'out').as_posix()}\n"
                "reports:\n"
                "  format: xlsx\n"
                "logging:\n"
                "  verbose: false\n",
                encoding="utf-8",
            )
            main([str(cfg_path)])
            self.assertTrue((tmp / "out" / "Serie 12" / "Nachmessung_Serie 12.xlsx").exists())
