# constants/block.py
"""
Enumerations of the block tracking domain.
  - classification of a block: ModelType / ModemType / ExecutionType / BlockType
  - the operation catalog (OperationName)
  - sync bookkeeping (SyncStatus) and derived block status (BlockStatus)
Each Enum exposes values() for the validation helpers in services.
"""

from enum import Enum


class ModelType(Enum):
    MODEL_1 = "Model1"
    MODEL_2 = "Model2"
    MODEL_3 = "Model3"

    @classmethod
    def values(cls):
        return [m.value for m in cls]


class ModemType(Enum):
    MODEM_A = "ModemA"
    MODEM_B = "ModemB"
    MODEM_C = "ModemC"

    @classmethod
    def values(cls):
        return [m.value for m in cls]


class ExecutionType(Enum):
    EXECUTION_X = "ExecutionX"
    EXECUTION_Y = "ExecutionY"
    EXECUTION_Z = "ExecutionZ"

    @classmethod
    def values(cls):
        return [m.value for m in cls]


class BlockType(Enum):
    TYPE_1 = "Type1"
    TYPE_2 = "Type2"
    TYPE_3 = "Type3"

    @classmethod
    def values(cls):
        return [m.value for m in cls]


class OperationName(Enum):
    """Production steps in the order they are normally performed."""

    FLASHING = "Flashing"
    CALIBRATION = "Calibration"
    POWER_MEASUREMENT = "Power measurement"
    BUDGET = "Budget"
    CLIMATE_TEST = "Climate test"
    COLD_START = "Cold start"
    HOT_START = "Hot start"
    RSSI_SETUP = "RSSI setup"
    PRE_PACKING_CHECK = "Pre-packing check"

    @classmethod
    def values(cls):
        return [m.value for m in cls]


class SyncStatus(Enum):
    PENDING = "pending"
    SYNCED = "synced"
    DELETED = "deleted"

    @classmethod
    def values(cls):
        return [m.value for m in cls]


class BlockStatus(Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"

    @classmethod
    def values(cls):
        return [m.value for m in cls]


# operations separated by more than this are a paused shift, not a duration
MAX_OPERATION_GAP_MS = 4 * 60 * 60 * 1000

UNKNOWN_OPERATOR = "Unknown operator"
UNKNOWN_OPERATION = "Unknown operation"
