import unittest

from qp_wasser.core.classify import ChemSet, DeviceGroup
from qp_wasser.core.selection import SelectionState, available_params, describe_params, groups_in_row
from qp_wasser.loaders.csv_loader import parse_text

from lab_fixtures import sample_csv_text

P2_AVAILABLE = ["LFLFLFM", "TITpH", "ICCa", "PPO4IC", "ICPFe", "PPgesICP"]


class SelectionTestBase(unittest.TestCase):
    def setUp(self):
        self.ds = parse_text(sample_csv_text(), "serie12.csv")
        self.state = SelectionState.initial(self.ds)
        self.p2 = self.ds.record("row-3")
        self.available = available_params(self.p2, self.ds.result_headers)


class InitialStateTests(SelectionTestBase):
    def test_no_rows_selected(self):
        self.assertEqual(frozenset(), self.state.selected_row_ids)
        self.assertFalse(self.state.all_selected())

    def test_params_seeded_from_all_non_empty_columns(self):
        params = self.state.params("row-3")
        self.assertIn("ICCa", params)
        self.assertIn("LFLFLFM", params)
        self.assertIn("Corg berechnet", params)
        self.assertNotIn("TOCNPOC", params)
        self.assertEqual({"row-2", "row-3", "row-4"}, set(self.state.row_params))

    def test_available_params_relevant_and_ordered(self):
        self.assertEqual(P2_AVAILABLE, self.available)

    def test_groups_in_row(self):
        self.assertEqual([DeviceGroup.PH_LF_TIT, DeviceGroup.IC, DeviceGroup.ICP_OES],
                         groups_in_row(self.available))

    def test_describe_params(self):
        narrowed = self.state.apply_chem_set("row-3", ChemSet.P, self.available)
        self.assertEqual("TIT: LFLFLFM pH | IC: Ca [PPO4IC] | ICP: Fe [PPgesICP]",
                         describe_params(self.available, narrowed.params("row-3")))


class RowToggleTests(SelectionTestBase):
    def test_toggle_row_twice_restores(self):
        on = self.state.toggle_row("row-3")
        self.assertTrue(on.is_selected("row-3"))
        self.assertFalse(self.state.is_selected("row-3"))
        self.assertEqual(self.state, on.toggle_row("row-3"))

    def test_unknown_row(self):
        with self.assertRaises(KeyError):
            self.state.toggle_row("row-99")
        with self.assertRaises(KeyError):
            self.state.toggle_param("row-99", "ICCa")

    def test_toggle_all_rows(self):
        partial = self.state.toggle_row("row-2")
        everything = partial.toggle_all_rows()
        self.assertTrue(everything.all_selected())
        self.assertEqual(frozenset(), everything.toggle_all_rows().selected_row_ids)


class ParamToggleTests(SelectionTestBase):
    def test_toggle_param(self):
        off = self.state.toggle_param("row-3", "ICCa")
        self.assertNotIn("ICCa", off.params("row-3"))
        self.assertIn("ICCa", self.state.params("row-3"))
        self.assertIn("ICCa", off.toggle_param("row-3", "ICCa").params("row-3"))

    def test_toggle_all_params(self):
        # all available are seeded -> everything off
        off = self.state.toggle_all_params("row-3", self.available)
        self.assertTrue(off.params("row-3").isdisjoint(self.available))
        self.assertIn("Corg berechnet", off.params("row-3"))
        # partially on -> everything on
        partial = off.toggle_param("row-3", "ICCa")
        on = partial.toggle_all_params("row-3", self.available)
        self.assertTrue(set(self.available) <= on.params("row-3"))

    def test_toggle_group(self):
        off = self.state.toggle_group("row-3", DeviceGroup.IC, self.available)
        self.assertNotIn("ICCa", off.params("row-3"))
        self.assertNotIn("PPO4IC", off.params("row-3"))
        self.assertIn("ICPFe", off.params("row-3"))
        on = off.toggle_group("row-3", DeviceGroup.IC, self.available)
        self.assertEqual(self.state.params("row-3"), on.params("row-3"))

    def test_toggle_absent_group_is_noop(self):
        self.assertIs(self.state, self.state.toggle_group("row-3", DeviceGroup.TOC, self.available))


class ChemSetTests(SelectionTestBase):
    def test_apply_replaces_selection(self):
        narrowed = self.state.apply_chem_set("row-3", ChemSet.P, self.available)
        self.assertEqual(frozenset({"PPO4IC", "PPgesICP"}), narrowed.params("row-3"))

    def test_apply_accepts_plain_string(self):
        narrowed = self.state.apply_chem_set("row-3", "P", self.available)
        self.assertEqual(frozenset({"PPO4IC", "PPgesICP"}), narrowed.params("row-3"))

    def test_no_matching_parameter_leaves_state(self):
        self.assertIs(self.state, self.state.apply_chem_set("row-3", ChemSet.S, self.available))

    def test_other_rows_untouched(self):
        narrowed = self.state.apply_chem_set("row-3", ChemSet.P, self.available)
        self.assertEqual(self.state.params("row-2"), narrowed.params("row-2"))


class SerializationTests(SelectionTestBase):
    def test_round_trip(self):
        state = self.state.toggle_row("row-3").apply_chem_set("row-3", ChemSet.P, self.available)
        data = state.to_dict()
        self.assertEqual(["row-3"], data["selectedRowIds"])
        self.assertEqual(["PPO4IC", "PPgesICP"], data["rowParams"]["row-3"])
        self.assertEqual(state, SelectionState.from_dict(data))

    def test_state_is_read_only(self):
        with self.assertRaises(TypeError):
            self.state.row_params["row-3"] = frozenset()
