# -*- coding: utf-8 -*-
"""Full cycles between a station app and a peer app, each on its own in-memory database."""

from __future__ import annotations

import threading

import pytest

from extensions.database import db
from models import Operation
from services.block_service import BlockService
from services.record_store import RecordStore
from services.sync_service import SyncService, SyncState
from utils.exceptions import SyncInProgressError, SyncTransportError

OPERATOR = "alice"


def _on_peer(peer_app, fn, *args):
    with peer_app.app_context():
        return fn(*args)


def _operation_count(block_id):
    return len(db.session.query(Operation).filter(Operation.block_id == block_id).all())


def test_cycle_pushes_local_changes(app, peer_app, peer_transport, block_payload):
    stored = BlockService.add_block(
        block_payload(operations=[{"name": "Flashing", "success": True}]), OPERATOR
    )
    service = SyncService(peer_transport)

    report = service.synchronize()

    assert report.ok
    assert report.sent_blocks == 1
    assert report.sent_operations == 1
    assert report.settled == 2
    assert service.state == SyncState.IDLE
    assert RecordStore.get_pending_changes() == {"blocks": [], "operations": []}

    remote = _on_peer(peer_app, RecordStore.get_block_by_id, stored["id"])
    assert remote["blockNumber"] == stored["blockNumber"]
    assert [op["name"] for op in remote["operations"]] == ["Flashing"]
    assert remote["syncStatus"] == "synced"
    # the peer does not hand the station's rows back as its own changes
    assert _on_peer(peer_app, RecordStore.get_pending_changes) == {"blocks": [], "operations": []}


def test_cycle_pulls_peer_changes(app, peer_app, peer_transport, block_payload):
    remote = _on_peer(peer_app, BlockService.add_block, block_payload(
        operations=[{"name": "Flashing", "success": True}, {"name": "Calibration", "success": True}]
    ), "bob")

    report = SyncService(peer_transport).synchronize()

    assert report.received_blocks == 1
    assert report.received_operations == 2
    local = BlockService.get_block_by_id(remote["id"])
    assert [op["name"] for op in local["operations"]] == ["Flashing", "Calibration"]
    assert local["syncStatus"] == "synced"
    assert RecordStore.get_pending_changes() == {"blocks": [], "operations": []}


def test_transport_failure_leaves_everything_pending(app, peer_transport, block_payload):
    BlockService.add_block(block_payload(), OPERATOR)
    before = RecordStore.get_pending_changes()
    peer_transport.offline = True
    service = SyncService(peer_transport)

    with pytest.raises(SyncTransportError):
        service.synchronize()

    assert service.state == SyncState.FAILED
    assert service.last_report.error
    assert service.last_report.to_dict()["status"] == "error"
    assert RecordStore.get_pending_changes() == before


def test_repeated_cycles_do_not_duplicate_operations(app, peer_app, peer_transport, block_payload):
    stored = BlockService.add_block(
        block_payload(operations=[{"name": "Flashing", "success": True}, {"name": "Budget", "success": False}]),
        OPERATOR,
    )
    service = SyncService(peer_transport)

    peer_transport.offline = True
    with pytest.raises(SyncTransportError):
        service.synchronize()
    peer_transport.offline = False

    service.synchronize()
    second = service.synchronize()

    assert second.sent_blocks == 0 and second.sent_operations == 0
    assert second.applied == 0
    assert _operation_count(stored["id"]) == 2
    assert _on_peer(peer_app, _operation_count, stored["id"]) == 2


def test_edits_and_deletes_propagate(app, peer_app, peer_transport, block_payload):
    service = SyncService(peer_transport)
    stored = BlockService.add_block(block_payload(operations=[{"name": "Flashing", "success": True}]), OPERATOR)
    service.synchronize()

    BlockService.update_block(stored["id"], {"operations": [], "modelType": "Model2"}, OPERATOR)
    service.synchronize()
    remote = _on_peer(peer_app, RecordStore.get_block_by_id, stored["id"])
    assert remote["modelType"] == "Model2"
    assert remote["operations"] == []
    assert _on_peer(peer_app, _operation_count, stored["id"]) == 0

    BlockService.delete_block(stored["id"], OPERATOR)
    service.synchronize()
    assert _on_peer(peer_app, RecordStore.block_exists, stored["id"]) is False
    assert RecordStore.block_exists(stored["id"]) is False


def test_newer_peer_version_wins(app, peer_app, peer_transport, block_payload):
    service = SyncService(peer_transport)
    stored = BlockService.add_block(block_payload(), OPERATOR)
    service.synchronize()

    # the peer edits twice (v3), the station once (v2)
    _on_peer(peer_app, BlockService.update_block, stored["id"], {"modelType": "Model2"}, "bob")
    _on_peer(peer_app, BlockService.update_block, stored["id"], {"modelType": "Model3"}, "bob")
    BlockService.update_block(stored["id"], {"modemType": "ModemC"}, OPERATOR)

    service.synchronize()

    local = BlockService.get_block_by_id(stored["id"])
    assert local["modelType"] == "Model3"
    assert local["serverVersion"] == 3
    assert local["syncStatus"] == "synced"
    # the station's older v2 was ignored by the peer
    remote = _on_peer(peer_app, RecordStore.get_block_by_id, stored["id"])
    assert remote["modelType"] == "Model3"
    assert remote["modemType"] != "ModemC"


def test_overlapping_cycles_are_refused(app):
    entered = threading.Event()
    release = threading.Event()

    class SlowTransport:
        def exchange(self, changes):
            entered.set()
            release.wait(5)
            return {"blocks": [], "operations": []}

    service = SyncService(SlowTransport())

    def run():
        with app.app_context():
            service.synchronize()

    worker = threading.Thread(target=run)
    worker.start()
    try:
        assert entered.wait(5)
        assert service.running
        with pytest.raises(SyncInProgressError):
            service.synchronize()
    finally:
        release.set()
        worker.join(5)
    assert service.last_report.ok


def test_concurrent_delete_and_edit_at_same_version_converge(app, peer_app, peer_transport, block_payload):
    service = SyncService(peer_transport)
    stored = BlockService.add_block(block_payload(), OPERATOR)
    service.synchronize()

    # both sides move the block to v2 independently
    BlockService.delete_block(stored["id"], OPERATOR)
    _on_peer(peer_app, BlockService.update_block, stored["id"], {"modelType": "Model3"}, "bob")

    first = service.synchronize()
    second = service.synchronize()

    assert first.ok and second.ok
    local = BlockService.get_block_by_id(stored["id"])
    remote = _on_peer(peer_app, RecordStore.get_block_by_id, stored["id"])
    assert local["modelType"] == remote["modelType"] == "Model3"
    assert local["serverVersion"] == remote["serverVersion"] == 3
    assert RecordStore.get_pending_changes() == {"blocks": [], "operations": []}
    assert second.conflicts == 0


def test_concurrent_edit_and_delete_at_same_version_converge(app, peer_app, peer_transport, block_payload):
    service = SyncService(peer_transport)
    stored = BlockService.add_block(block_payload(), OPERATOR)
    service.synchronize()

    BlockService.update_block(stored["id"], {"modelType": "Model2"}, OPERATOR)
    _on_peer(peer_app, BlockService.delete_block, stored["id"], "bob")

    service.synchronize()
    service.synchronize()

    assert RecordStore.block_exists(stored["id"]) is False
    assert _on_peer(peer_app, RecordStore.block_exists, stored["id"], False) is False
    assert RecordStore.get_pending_changes() == {"blocks": [], "operations": []}


def test_duplicate_block_number_does_not_stall_other_changes(app, peer_app, peer_transport, block_payload):
    mine = BlockService.add_block(block_payload(blockNumber="1001"), OPERATOR)
    unrelated = BlockService.add_block(block_payload(blockNumber="2002"), OPERATOR)
    theirs = _on_peer(peer_app, BlockService.add_block, block_payload(blockNumber="1001"), "bob")
    service = SyncService(peer_transport)

    first = service.synchronize()
    second = service.synchronize()

    assert first.ok and second.ok
    assert first.conflicts == 1
    assert second.conflicts == 1
    assert first.to_dict()["conflicts"] == 1
    assert _on_peer(peer_app, RecordStore.get_block_by_id, unrelated["id"])["blockNumber"] == "2002"
    assert RecordStore.get_block_by_id(unrelated["id"])["syncStatus"] == "synced"
    # both copies of #1001 stay where they are, still waiting
    assert [b["id"] for b in RecordStore.get_pending_changes()["blocks"]] == [mine["id"]]
    assert RecordStore.block_exists(theirs["id"]) is False
    assert _on_peer(peer_app, RecordStore.block_exists, mine["id"]) is False
