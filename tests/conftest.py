# -*- coding: utf-8 -*-
"""Shared fixtures: in-memory station app, optional in-memory peer app."""

from __future__ import annotations

import uuid

import pytest

from app import create_app
from extensions.database import db
from utils.changeset import normalize_changes
from utils.exceptions import SyncTransportError


@pytest.fixture()
def app():
    """Station app with its app context pushed for the whole test."""

    app = create_app("testing")
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def peer_app():
    """A second, independent app playing the remote peer (own in-memory database)."""

    peer = create_app("testing")
    with peer.app_context():
        db.create_all()
    yield peer
    with peer.app_context():
        db.session.remove()
        db.drop_all()


class FlaskClientTransport:
    """Transport posting to the peer's /api/sync through its Flask test client."""

    def __init__(self, peer_app):
        self.client = peer_app.test_client()
        self.calls = 0
        self.offline = False

    def exchange(self, changes):
        self.calls += 1
        if self.offline:
            raise SyncTransportError("Sync peer unreachable: offline")
        resp = self.client.post("/api/sync", json=changes)
        if resp.status_code != 200:
            raise SyncTransportError(f"Sync peer answered HTTP {resp.status_code}", status=resp.status_code)
        return normalize_changes(resp.get_json(), strict=True)


@pytest.fixture()
def peer_transport(peer_app):
    return FlaskClientTransport(peer_app)


def random_number() -> str:
    return str(uuid.uuid4().int)[:8]


@pytest.fixture()
def block_payload():
    """Factory for a valid block payload with a fresh block number."""

    def _make(**overrides):
        payload = {
            "blockNumber": random_number(),
            "modelType": "Model1",
            "modemType": "ModemA",
            "executionType": "ExecutionX",
            "blockType": "Type1",
        }
        payload.update(overrides)
        return payload

    return _make
