# -*- coding: utf-8 -*-
"""Unit tests for the local facade (BlockService) on an in-memory database."""

from __future__ import annotations

import pytest

from constants.block import OperationName
from repositories.operation_repository import OperationRepository
from services.block_service import BlockService
from services.record_store import RecordStore
from utils.datetime_helpers import parse_datetime
from utils.exceptions import NotFoundError, ValidationError

OPERATOR = "alice"

T1 = "2024-05-01T08:00:00Z"
T2 = "2024-05-01T08:10:00Z"


def _fields(exc: ValidationError):
    return {e["field"] for e in exc.errors}


def test_add_block_round_trip_keeps_operations_in_order(app, block_payload):
    payload = block_payload(operations=[
        {"name": "Flashing", "success": True, "timestamp": T1},
        {"name": "Calibration", "success": False, "timestamp": T2, "errorCode": "E42"},
    ])

    stored = BlockService.add_block(payload, OPERATOR)
    block = BlockService.get_block_by_id(stored["id"])

    assert block["blockNumber"] == payload["blockNumber"]
    assert block["operator"] == OPERATOR
    assert [op["name"] for op in block["operations"]] == ["Flashing", "Calibration"]
    assert [op["success"] for op in block["operations"]] == [True, False]
    assert [parse_datetime(op["timestamp"]) for op in block["operations"]] == [
        parse_datetime(T1), parse_datetime(T2)
    ]
    assert block["operations"][1]["errorCode"] == "E42"
    # executor defaults to the acting operator
    assert {op["executor"] for op in block["operations"]} == {OPERATOR}
    assert block["syncStatus"] == "pending"
    assert block["serverVersion"] == 1


def test_update_with_empty_operations_replaces_the_list(app, block_payload):
    stored = BlockService.add_block(
        block_payload(operations=[{"name": "Flashing", "success": True, "timestamp": T1}]), OPERATOR
    )

    BlockService.update_block(stored["id"], {"operations": []}, OPERATOR)

    assert BlockService.get_block_by_id(stored["id"])["operations"] == []


def test_update_without_operations_keeps_them(app, block_payload):
    stored = BlockService.add_block(
        block_payload(operations=[{"name": "Flashing", "success": True, "timestamp": T1}]), OPERATOR
    )

    updated = BlockService.update_block(stored["id"], {"modelType": "Model2"}, OPERATOR)
    block = BlockService.get_block_by_id(stored["id"])

    assert updated["serverVersion"] == 2
    assert block["modelType"] == "Model2"
    assert len(block["operations"]) == 1


def test_update_with_null_operations_keeps_them(app, block_payload):
    stored = BlockService.add_block(
        block_payload(operations=[{"name": "Flashing", "success": True, "timestamp": T1}]), OPERATOR
    )

    BlockService.update_block(stored["id"], {"operations": None, "modelType": "Model2"}, OPERATOR)
    block = BlockService.get_block_by_id(stored["id"])

    assert block["modelType"] == "Model2"
    assert [op["name"] for op in block["operations"]] == ["Flashing"]


def test_resubmitting_operations_keeps_their_ids(app, block_payload):
    stored = BlockService.add_block(
        block_payload(operations=[{"name": "Flashing", "success": True, "timestamp": T1}]), OPERATOR
    )
    before = BlockService.get_block_by_id(stored["id"])["operations"]

    ops = before + [{"name": "Calibration", "success": True, "timestamp": T2}]
    BlockService.update_block(stored["id"], {"operations": ops}, OPERATOR)
    after = BlockService.get_block_by_id(stored["id"])["operations"]

    assert after[0]["id"] == before[0]["id"]
    assert len(after) == 2
    # the untouched operation did not get a new version
    pending = RecordStore.get_pending_changes()
    versions = {op["id"]: op["serverVersion"] for op in pending["operations"]}
    assert versions[before[0]["id"]] == 1


def test_duplicate_block_number_is_rejected(app, block_payload):
    payload = block_payload()
    BlockService.add_block(payload, OPERATOR)

    with pytest.raises(ValidationError) as exc:
        BlockService.add_block(block_payload(blockNumber=payload["blockNumber"]), OPERATOR)

    assert "blockNumber" in _fields(exc.value)
    assert len(BlockService.get_all_blocks()) == 1


def test_update_cannot_steal_another_block_number(app, block_payload):
    first = BlockService.add_block(block_payload(), OPERATOR)
    second = BlockService.add_block(block_payload(), OPERATOR)

    with pytest.raises(ValidationError):
        BlockService.update_block(second["id"], {"blockNumber": first["blockNumber"]}, OPERATOR)

    # keeping its own number is fine
    BlockService.update_block(first["id"], {"blockNumber": first["blockNumber"]}, OPERATOR)


def test_deleted_block_number_can_be_reused(app, block_payload):
    payload = block_payload()
    first = BlockService.add_block(payload, OPERATOR)
    BlockService.delete_block(first["id"], OPERATOR)

    second = BlockService.add_block(block_payload(blockNumber=payload["blockNumber"]), OPERATOR)

    assert second["id"] != first["id"]


def test_validation_lists_every_violation_and_writes_nothing(app):
    with pytest.raises(ValidationError) as exc:
        BlockService.add_block(
            {
                "blockNumber": "12a",
                "modelType": "Model9",
                "macAddress": "not-a-mac",
                "operations": [{"name": "Dancing", "success": "yes"}],
            },
            OPERATOR,
        )

    fields = _fields(exc.value)
    assert {"blockNumber", "modelType", "macAddress",
            "operations[0].name", "operations[0].success"} <= fields
    assert exc.value.code == 400
    assert BlockService.get_all_blocks() == []


def test_required_fields(app):
    with pytest.raises(ValidationError) as exc:
        BlockService.add_block({}, OPERATOR)

    assert _fields(exc.value) == {"blockNumber", "modelType"}


def test_write_without_operator_is_rejected(app, block_payload):
    with pytest.raises(ValidationError) as exc:
        BlockService.add_block(block_payload(), "  ")

    assert _fields(exc.value) == {"operator"}


def test_mac_address_is_normalized(app, block_payload):
    stored = BlockService.add_block(block_payload(macAddress="aa-bb-cc-dd-ee-0f"), OPERATOR)

    assert stored["macAddress"] == "AA:BB:CC:DD:EE:0F"


def test_update_revalidates(app, block_payload):
    stored = BlockService.add_block(block_payload(), OPERATOR)

    with pytest.raises(ValidationError) as exc:
        BlockService.update_block(stored["id"], {"modelType": "Nope"}, OPERATOR)

    assert _fields(exc.value) == {"modelType"}
    assert BlockService.get_block_by_id(stored["id"])["modelType"] == "Model1"


def test_update_unknown_block(app):
    with pytest.raises(NotFoundError):
        BlockService.update_block("missing", {"modelType": "Model2"}, OPERATOR)


def test_delete_cascades_to_operations(app, block_payload):
    stored = BlockService.add_block(
        block_payload(operations=[
            {"name": "Flashing", "success": True, "timestamp": T1},
            {"name": "Calibration", "success": True, "timestamp": T2},
        ]),
        OPERATOR,
    )

    assert BlockService.delete_block(stored["id"], OPERATOR) is True

    with pytest.raises(NotFoundError):
        BlockService.get_block_by_id(stored["id"])
    assert OperationRepository.list_by_block(stored["id"]) == []

    # once the peer has acknowledged the tombstones nothing is left at all
    RecordStore.mark_as_synced(RecordStore.get_pending_changes())
    assert OperationRepository.list_by_block(stored["id"], include_deleted=True) == []
    assert RecordStore.block_exists(stored["id"]) is False


def test_delete_unknown_block_returns_false(app):
    assert BlockService.delete_block("missing", OPERATOR) is False


def test_flashing_scenario(app):
    stored = BlockService.add_block({"blockNumber": "1001", "modelType": "Model1"}, OPERATOR)
    assert BlockService.get_block_by_id(stored["id"])["status"] == "not_started"

    BlockService.update_block(
        stored["id"],
        {"operations": [{"name": "Flashing", "success": True, "timestamp": T1}]},
        OPERATOR,
    )
    block = BlockService.get_block_by_id(stored["id"])
    assert len(block["operations"]) == 1
    assert block["operations"][0]["name"] == "Flashing"
    assert block["operations"][0]["success"] is True
    assert block["status"] == "in_progress"

    BlockService.delete_block(stored["id"], OPERATOR)
    with pytest.raises(NotFoundError):
        BlockService.get_block_by_id(stored["id"])


def test_add_operation_appends_and_stamps_executor(app, block_payload):
    stored = BlockService.add_block(block_payload(), "bob")

    block = BlockService.add_operation(stored["id"], {"name": "Flashing", "success": True}, OPERATOR)
    block = BlockService.add_operation(block["id"], {"name": "Calibration", "success": False}, OPERATOR)

    assert [op["name"] for op in block["operations"]] == ["Flashing", "Calibration"]
    assert block["operations"][0]["executor"] == OPERATOR
    assert block["operations"][0]["timestamp"] is not None
    assert block["status"] == "error"


def test_completed_status_after_every_catalog_step(app, block_payload):
    ops = [
        {"name": name, "success": True, "timestamp": f"2024-05-01T08:{i:02d}:00Z"}
        for i, name in enumerate(OperationName.values())
    ]
    stored = BlockService.add_block(block_payload(operations=ops), OPERATOR)

    assert BlockService.get_block_by_id(stored["id"])["status"] == "completed"


def test_list_blocks_filters(app, block_payload):
    BlockService.add_block(block_payload(modelType="Model1"), "alice")
    BlockService.add_block(
        block_payload(modelType="Model2", operations=[{"name": "Flashing", "success": False}]), "bob"
    )

    assert len(BlockService.list_blocks()) == 2
    assert [b["operator"] for b in BlockService.list_blocks(operator="bob")] == ["bob"]
    assert [b["modelType"] for b in BlockService.list_blocks(model_type="Model1")] == ["Model1"]
    assert [b["operator"] for b in BlockService.list_blocks(status="error")] == ["bob"]
    assert len(BlockService.get_blocks_by_operator("alice")) == 1

    with pytest.raises(ValidationError):
        BlockService.list_blocks(status="weird")
