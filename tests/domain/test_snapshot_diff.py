"""Pure snapshot comparison: scalar diff and line-item set diff by code."""

from budget_kernel.domain.snapshot_diff import (
    FieldChange,
    compare_line_items,
    compare_snapshot_data,
    diff_fields,
)


def _item(code, amount="100.00", name=None, id_="x"):
    return {"id": id_, "code": code, "name": name or code, "amount": amount}


class TestDiffFields:
    def test_reports_only_changed_keys_sorted(self):
        changes = diff_fields({"b": 1, "a": 1, "c": 3}, {"b": 2, "a": 1, "c": 4})
        assert changes == (
            FieldChange("b", 1, 2),
            FieldChange("c", 3, 4),
        )

    def test_missing_key_compares_as_none(self):
        assert diff_fields({}, {"x": 5}) == (FieldChange("x", None, 5),)

    def test_excluded_keys_ignored(self):
        assert diff_fields({"id": 1}, {"id": 2}, exclude=frozenset({"id"})) == ()


class TestCompareLineItems:
    def test_classifies_added_removed_modified_unchanged(self):
        result = compare_line_items(
            [_item("A"), _item("B"), _item("C")],
            [_item("B", amount="150.00"), _item("C"), _item("D")],
        )
        assert [i["code"] for i in result.added] == ["D"]
        assert [i["code"] for i in result.removed] == ["A"]
        assert [m.code for m in result.modified] == ["B"]
        assert result.modified[0].changes == (FieldChange("amount", "100.00", "150.00"),)
        assert [i["code"] for i in result.unchanged] == ["C"]

    def test_matches_by_code_not_identity(self):
        result = compare_line_items([_item("A", id_="old")], [_item("A", id_="new")])
        assert result.modified == ()
        assert len(result.unchanged) == 1


class TestCompareSnapshotData:
    def test_budget_scalar_changes_and_summary(self):
        first = {"budget": {"id": "b", "title": "Old"}, "line_items": [_item("A")]}
        second = {"budget": {"id": "b", "title": "New"}, "line_items": [_item("A"), _item("B")]}

        comparison = compare_snapshot_data("s1", first, "s2", second)

        assert comparison.budget_changes == (FieldChange("title", "Old", "New"),)
        assert comparison.summary.total_items_1 == 1
        assert comparison.summary.total_items_2 == 2
        assert comparison.summary.added == 1
        assert comparison.has_changes

    def test_identical_payloads_have_no_changes(self):
        data = {"budget": {"title": "Same"}, "line_items": [_item("A")]}
        assert not compare_snapshot_data("s1", data, "s2", data).has_changes
