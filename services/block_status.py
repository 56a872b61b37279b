# services/block_status.py
"""
The one place a block's effective status is computed.

Rules, evaluated on the operations list in insertion order:
  - no operations                                   -> not_started
  - latest attempt of any operation name failed     -> error
  - every catalog operation has a successful latest -> completed
  - anything else                                   -> in_progress
A later successful retry of a failed step clears the error.
"""

from typing import Iterable, Mapping

from constants.block import BlockStatus, OperationName


def latest_attempts(operations: Iterable[Mapping]) -> dict:
    latest = {}
    for op in operations:
        name = op.get("name")
        if name:
            latest[name] = bool(op.get("success"))
    return latest


def compute_block_status(operations) -> str:
    operations = list(operations or [])
    if not operations:
        return BlockStatus.NOT_STARTED.value

    latest = latest_attempts(operations)
    if any(ok is False for ok in latest.values()):
        return BlockStatus.ERROR.value
    if all(latest.get(name) for name in OperationName.values()):
        return BlockStatus.COMPLETED.value
    return BlockStatus.IN_PROGRESS.value
