# -*- coding: utf-8 -*-
import pytest

from constants.block import OperationName
from services.block_status import compute_block_status, latest_attempts


def _op(name, success):
    return {"name": name, "success": success}


ALL_OK = [_op(name, True) for name in OperationName.values()]


@pytest.mark.parametrize("operations, expected", [
    ([], "not_started"),
    (None, "not_started"),
    ([_op("Flashing", True)], "in_progress"),
    ([_op("Flashing", False)], "error"),
    ([_op("Flashing", False), _op("Flashing", True)], "in_progress"),
    ([_op("Flashing", True), _op("Flashing", False)], "error"),
    (ALL_OK, "completed"),
    (ALL_OK + [_op("Calibration", False)], "error"),
])
def test_compute_block_status(operations, expected):
    assert compute_block_status(operations) == expected


def test_latest_attempt_wins():
    ops = [_op("Flashing", False), _op("Calibration", True), _op("Flashing", True)]

    assert latest_attempts(ops) == {"Flashing": True, "Calibration": True}
