# -*- coding: utf-8 -*-
"""Shape checks for the ``{blocks, operations}`` change sets exchanged by peers.

Both sides of the sync protocol run every incoming payload through
:func:`normalize_changes` before touching their store.
"""

from __future__ import annotations

from typing import Any, Dict, List

from constants.block import SyncStatus
from utils.exceptions import ValidationError

COLLECTIONS = ("blocks", "operations")


def empty_changes() -> Dict[str, List[dict]]:
    return {"blocks": [], "operations": []}


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_row(collection: str, index: int, row: Any, errors: List[dict]):
    where = f"{collection}[{index}]"
    if not isinstance(row, dict):
        errors.append({"field": where, "message": "must be an object"})
        return
    if not isinstance(row.get("id"), str) or not row["id"].strip():
        errors.append({"field": f"{where}.id", "message": "must be a non-empty string"})
    version = row.get("serverVersion")
    if not _is_int(version) or version < 0:
        errors.append({"field": f"{where}.serverVersion", "message": "must be a non-negative integer"})
    status = row.get("syncStatus")
    if status is not None and status not in SyncStatus.values():
        errors.append({"field": f"{where}.syncStatus", "message": f"must be one of {SyncStatus.values()}"})
    if collection == "operations" and not isinstance(row.get("blockId"), str):
        errors.append({"field": f"{where}.blockId", "message": "must be a string"})


def normalize_changes(payload: Any, *, strict: bool = False) -> Dict[str, List[dict]]:
    """Return a clean ``{"blocks": [...], "operations": [...]}`` copy.

    :param strict: require both keys to be present (peer responses);
        otherwise a missing key means an empty list.
    :raises ValidationError: listing every malformed row.
    """

    if not isinstance(payload, dict):
        raise ValidationError([{"field": "body", "message": "must be an object with blocks and operations"}])

    errors: List[dict] = []
    result = empty_changes()
    for collection in COLLECTIONS:
        rows = payload.get(collection)
        if rows is None and not strict:
            continue
        if not isinstance(rows, list):
            errors.append({"field": collection, "message": "must be a list"})
            continue
        for index, row in enumerate(rows):
            _check_row(collection, index, row, errors)
        result[collection] = [dict(row) for row in rows if isinstance(row, dict)]

    if errors:
        raise ValidationError(errors, message="Malformed change set: " + "; ".join(
            f"{e['field']} {e['message']}" for e in errors[:10]
        ))
    return result


def count_changes(changes: Dict[str, List[dict]]) -> int:
    return len(changes.get("blocks") or []) + len(changes.get("operations") or [])
