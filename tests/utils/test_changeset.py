# -*- coding: utf-8 -*-
import pytest

from utils.changeset import count_changes, empty_changes, normalize_changes
from utils.exceptions import ValidationError


def test_missing_collections_default_to_empty():
    assert normalize_changes({}) == empty_changes()
    assert normalize_changes({"blocks": [{"id": "b", "serverVersion": 0}]})["operations"] == []


def test_strict_mode_requires_both_collections():
    with pytest.raises(ValidationError):
        normalize_changes({"blocks": []}, strict=True)


def test_every_bad_row_is_reported():
    payload = {
        "blocks": [{"id": "ok", "serverVersion": 1}, {"id": "", "serverVersion": True}],
        "operations": [{"id": "op", "serverVersion": 1, "syncStatus": "lost"}],
    }

    with pytest.raises(ValidationError) as exc:
        normalize_changes(payload)

    fields = {e["field"] for e in exc.value.errors}
    assert fields == {
        "blocks[1].id",
        "blocks[1].serverVersion",
        "operations[0].syncStatus",
        "operations[0].blockId",
    }
    assert exc.value.message.startswith("Malformed change set")


def test_rows_are_copied():
    row = {"id": "b", "serverVersion": 3}

    result = normalize_changes({"blocks": [row], "operations": []})
    result["blocks"][0]["id"] = "changed"

    assert row["id"] == "b"
    assert count_changes(result) == 1
