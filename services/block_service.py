# services/block_service.py
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Tuple

from constants.block import (
    BlockStatus,
    BlockType,
    ExecutionType,
    MAX_OPERATION_GAP_MS,
    ModelType,
    ModemType,
    OperationName,
    UNKNOWN_OPERATION,
    UNKNOWN_OPERATOR,
)
from services.block_status import compute_block_status
from services.record_store import RecordStore, new_record_id
from utils.datetime_helpers import datetime_to_iso, parse_datetime, utcnow
from utils.exceptions import ValidationError
from utils.validators import normalize_mac_address, validate_block_number

logger = logging.getLogger(__name__)

BLOCK_FIELDS = (
    "blockNumber", "modelType", "modemType", "executionType",
    "blockType", "macAddress", "operator", "date",
)

# optional classification fields and their allow-lists
_OPTIONAL_ENUMS = {
    "modemType": ModemType,
    "executionType": ExecutionType,
    "blockType": BlockType,
}


def _error(field: str, message: str) -> Dict[str, str]:
    return {"field": field, "message": message}


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class BlockService:
    """Local facade: domain rules in front of the record store."""

    # ------------------------------------------------------------ validation

    @staticmethod
    def _check_operation(index: int, op: Any, errors: List[dict]) -> Optional[dict]:
        where = f"operations[{index}]"
        if not isinstance(op, dict):
            errors.append(_error(where, "must be an object"))
            return None

        clean = dict(op)
        if op.get("name") not in OperationName.values():
            errors.append(_error(f"{where}.name", f"must be one of {OperationName.values()}"))
        if not isinstance(op.get("success"), bool):
            errors.append(_error(f"{where}.success", "must be true or false"))
        try:
            clean["timestamp"] = parse_datetime(op.get("timestamp"))
        except (TypeError, ValueError):
            errors.append(_error(f"{where}.timestamp", "is not a valid timestamp"))
        duration = op.get("duration")
        if duration is not None and (
            isinstance(duration, bool) or not isinstance(duration, int) or duration < 0
        ):
            errors.append(_error(f"{where}.duration", "must be a non-negative integer (ms)"))
        for text_field in ("executor", "comment", "errorCode", "errorDescription"):
            value = op.get(text_field)
            if value is not None and not isinstance(value, str):
                errors.append(_error(f"{where}.{text_field}", "must be a string"))
        return clean

    @staticmethod
    def collect_errors(data: Dict[str, Any], *, exclude_id: Optional[str] = None,
                       check_unique: bool = True) -> Tuple[Dict[str, Any], List[dict]]:
        """Validate a block payload, returning the cleaned payload and every violation."""
        errors: List[dict] = []
        clean = dict(data)

        model_type = data.get("modelType")
        if _blank(model_type):
            errors.append(_error("modelType", "is required"))
        elif model_type not in ModelType.values():
            errors.append(_error("modelType", f"must be one of {ModelType.values()}"))

        block_number = data.get("blockNumber")
        if _blank(block_number):
            errors.append(_error("blockNumber", "is required"))
        elif not validate_block_number(block_number):
            errors.append(_error("blockNumber", "must contain digits only"))
        else:
            clean["blockNumber"] = str(block_number).strip()

        for field, enum in _OPTIONAL_ENUMS.items():
            value = data.get(field)
            if _blank(value):
                clean[field] = None
            elif value not in enum.values():
                errors.append(_error(field, f"must be one of {enum.values()}"))

        mac = data.get("macAddress")
        if _blank(mac):
            clean["macAddress"] = None
        else:
            normalized = normalize_mac_address(mac) if isinstance(mac, str) else None
            if normalized is None:
                errors.append(_error("macAddress", "must look like AA:BB:CC:DD:EE:FF"))
            clean["macAddress"] = normalized

        try:
            clean["date"] = parse_datetime(data.get("date"))
        except (TypeError, ValueError):
            errors.append(_error("date", "is not a valid timestamp"))

        operations = data.get("operations")
        if operations is not None:
            if not isinstance(operations, list):
                errors.append(_error("operations", "must be a list"))
            else:
                clean["operations"] = [
                    BlockService._check_operation(i, op, errors) for i, op in enumerate(operations)
                ]

        if check_unique and "blockNumber" in clean and not any(e["field"] == "blockNumber" for e in errors):
            existing = RecordStore.find_block_by_number(clean["blockNumber"])
            if existing and existing["id"] != exclude_id:
                errors.append(_error("blockNumber", f"{clean['blockNumber']} is already used by another block"))

        return clean, errors

    @staticmethod
    def validate_block(data: Dict[str, Any], *, exclude_id: Optional[str] = None) -> Dict[str, Any]:
        clean, errors = BlockService.collect_errors(data, exclude_id=exclude_id)
        if errors:
            raise ValidationError(errors)
        return clean

    @staticmethod
    def _require_operator(operator: Optional[str]) -> str:
        if _blank(operator):
            raise ValidationError([_error("operator", "acting operator is required")])
        return operator.strip()

    # ---------------------------------------------------------------- writes

    @staticmethod
    def add_block(data: Dict[str, Any], operator: str) -> Dict[str, Any]:
        operator = BlockService._require_operator(operator)
        payload = dict(data or {})
        payload["operator"] = operator

        clean, errors = BlockService.collect_errors(payload)
        if payload.get("id") and RecordStore.block_exists(payload["id"]):
            errors.append(_error("id", f"{payload['id']} already exists"))
        if errors:
            raise ValidationError(errors)

        stored = RecordStore.add_block(clean)
        logger.info("block %s #%s created by %s", stored["id"], stored["blockNumber"], operator)
        return stored

    @staticmethod
    def update_block(block_id: str, data: Dict[str, Any], operator: str) -> Dict[str, Any]:
        operator = BlockService._require_operator(operator)
        data = data or {}
        current = RecordStore.get_block_by_id(block_id)

        merged = {field: current.get(field) for field in BLOCK_FIELDS}
        merged.update({k: v for k, v in data.items() if k in BLOCK_FIELDS})
        merged["operator"] = operator
        if data.get("operations") is not None:
            merged["operations"] = data["operations"]

        clean = BlockService.validate_block(merged, exclude_id=block_id)
        fields = {field: clean.get(field) for field in BLOCK_FIELDS}
        if fields["date"] is None:
            fields["date"] = current["date"]
        # a null list means "not supplied", like an absent key
        if data.get("operations") is not None:
            fields["operations"] = clean.get("operations") or []

        stored = RecordStore.update_block(block_id, fields)
        logger.info("block %s updated by %s (v%s)", block_id, operator, stored["serverVersion"])
        return stored

    @staticmethod
    def add_operation(block_id: str, operation: Dict[str, Any], operator: str) -> Dict[str, Any]:
        """Append one operation; a full update cycle of the block's list."""
        operator = BlockService._require_operator(operator)
        current = RecordStore.get_block_by_id(block_id)
        operation = dict(operation or {})
        operation.setdefault("executor", operator)
        if operation.get("timestamp") is None:
            operation["timestamp"] = datetime_to_iso(utcnow())
        operations = current["operations"] + [operation]
        BlockService.update_block(block_id, {"operations": operations}, operator)
        return RecordStore.get_block_by_id(block_id)

    @staticmethod
    def delete_block(block_id: str, operator: str) -> bool:
        operator = BlockService._require_operator(operator)
        deleted = RecordStore.delete_block(block_id)
        if deleted:
            logger.info("block %s deleted by %s", block_id, operator)
        return deleted

    # ----------------------------------------------------------------- reads

    @staticmethod
    def get_all_blocks() -> List[Dict[str, Any]]:
        return RecordStore.get_all_blocks()

    @staticmethod
    def get_block_by_id(block_id: str) -> Dict[str, Any]:
        return RecordStore.get_block_by_id(block_id)

    @staticmethod
    def get_blocks_by_operator(operator: str) -> List[Dict[str, Any]]:
        return RecordStore.get_blocks_by_operator(operator)

    @staticmethod
    def list_blocks(operator: Optional[str] = None, status: Optional[str] = None,
                    model_type: Optional[str] = None) -> List[Dict[str, Any]]:
        if status is not None and status not in BlockStatus.values():
            raise ValidationError([_error("status", f"must be one of {BlockStatus.values()}")])
        blocks = (
            RecordStore.get_blocks_by_operator(operator) if operator else RecordStore.get_all_blocks()
        )
        if status:
            blocks = [b for b in blocks if b["status"] == status]
        if model_type:
            blocks = [b for b in blocks if b["modelType"] == model_type]
        return blocks

    # ------------------------------------------------------------ statistics

    @staticmethod
    def _window(start_date, end_date) -> Tuple[datetime, datetime]:
        try:
            start = parse_datetime(start_date)
            end = parse_datetime(end_date)
        except (TypeError, ValueError):
            raise ValidationError([_error("period", "start and end must be valid dates")])
        if start is None or end is None:
            raise ValidationError([_error("period", "start and end are required")])
        # a bare date as the upper bound covers the whole day
        if isinstance(end_date, date) and not isinstance(end_date, datetime):
            end = datetime.combine(end_date, time.max)
        elif isinstance(end_date, str) and len(end_date.strip()) == 10:
            end = datetime.combine(end.date(), time.max)
        if start > end:
            raise ValidationError([_error("period", "start must not be after end")])
        return start, end

    @staticmethod
    def get_operations_stats(start_date, end_date) -> Dict[str, Any]:
        start, end = BlockService._window(start_date, end_date)
        blocks = RecordStore.get_blocks_between(start, end)

        stats = {
            "totalBlocks": len(blocks),
            "total": 0,
            "successful": 0,
            "failed": 0,
            "averageDuration": 0,
            "byOperator": {},
            "operations": {},
        }
        total_duration = 0
        duration_count = 0

        for block in blocks:
            previous_ts = None
            for op in block["operations"]:
                executor = op.get("executor") or block.get("operator") or UNKNOWN_OPERATOR
                stats["byOperator"][executor] = stats["byOperator"].get(executor, 0) + 1

                stats["total"] += 1
                if op["success"]:
                    stats["successful"] += 1
                else:
                    stats["failed"] += 1

                name = op.get("name") or UNKNOWN_OPERATION
                op_stats = stats["operations"].setdefault(name, {
                    "total": 0,
                    "successful": 0,
                    "failed": 0,
                    "averageDuration": 0,
                    "totalDuration": 0,
                    "durationCount": 0,
                })
                op_stats["total"] += 1
                if op["success"]:
                    op_stats["successful"] += 1
                else:
                    op_stats["failed"] += 1

                ts = parse_datetime(op.get("timestamp"))
                if previous_ts is not None and ts is not None:
                    gap_ms = int((ts - previous_ts).total_seconds() * 1000)
                    # gaps of 4h and more are pauses, not work
                    if 0 < gap_ms < MAX_OPERATION_GAP_MS:
                        total_duration += gap_ms
                        duration_count += 1
                        op_stats["totalDuration"] += gap_ms
                        op_stats["durationCount"] += 1
                        op_stats["averageDuration"] = op_stats["totalDuration"] / op_stats["durationCount"]
                previous_ts = ts

        stats["averageDuration"] = total_duration / duration_count if duration_count else 0
        return stats

    # ---------------------------------------------------------------- import

    @staticmethod
    def import_records(records: List[Dict[str, Any]], operator: str) -> List[Dict[str, Any]]:
        """Validate every record first; write all of them or none."""
        operator = BlockService._require_operator(operator)
        if not isinstance(records, list) or not records:
            raise ValidationError([_error("records", "must be a non-empty list")])

        now = datetime_to_iso(utcnow())
        errors: List[dict] = []
        prepared: List[dict] = []
        numbers_in_batch: Dict[str, int] = {}
        ids_in_batch = set()

        for index, record in enumerate(records, start=1):
            if not isinstance(record, dict):
                errors.append({"record": index, "field": "record", "message": "must be an object"})
                continue

            payload = dict(record)
            payload["operator"] = payload.get("operator") or operator
            clean, record_errors = BlockService.collect_errors(payload)

            number = clean.get("blockNumber")
            if number and number in numbers_in_batch:
                record_errors.append(_error(
                    "blockNumber", f"{number} duplicates record {numbers_in_batch[number]}"
                ))
            elif number:
                numbers_in_batch[number] = index

            record_id = payload.get("id")
            if record_id:
                if record_id in ids_in_batch or RecordStore.block_exists(record_id):
                    record_errors.append(_error("id", f"{record_id} already exists"))
                ids_in_batch.add(record_id)

            for err in record_errors:
                errors.append({"record": index, **err})
            if record_errors:
                continue

            clean["id"] = record_id or new_record_id()
            clean["createdAt"] = record.get("createdAt") or now
            clean["operations"] = clean.get("operations") or []
            prepared.append(clean)

        if errors:
            message = "Import rejected, nothing was written: " + "; ".join(
                f"record {e['record']}: {e['field']} {e['message']}" for e in errors
            )
            raise ValidationError(errors, message=message)

        stored = RecordStore.add_blocks(prepared)
        logger.info("imported %d blocks for %s", len(stored), operator)
        return stored

    # --------------------------------------------------------------- reports

    @staticmethod
    def _day_blocks(day) -> List[Dict[str, Any]]:
        try:
            day = parse_datetime(day) or utcnow()
        except (TypeError, ValueError):
            raise ValidationError([_error("date", "is not a valid date")])
        start = datetime.combine(day.date(), time.min)
        end = start + timedelta(days=1) - timedelta(microseconds=1)
        return RecordStore.get_blocks_between(start, end)

    @staticmethod
    def get_daily_report(day=None) -> List[Dict[str, Any]]:
        rows = []
        for block in BlockService._day_blocks(day):
            last = block["operations"][-1] if block["operations"] else None
            rows.append({
                "date": block["date"],
                "modelType": block["modelType"],
                "modemType": block["modemType"],
                "blockNumber": block["blockNumber"],
                "executionType": block["executionType"],
                "operator": block["operator"],
                "lastOperation": (
                    {"name": last["name"], "success": last["success"]} if last else None
                ),
                "status": compute_block_status(block["operations"]),
            })
        return rows

    @staticmethod
    def get_operator_daily_report(operator: str, day=None) -> List[Dict[str, Any]]:
        operator = BlockService._require_operator(operator)
        blocks = BlockService._day_blocks(day)
        rows = []
        for name in OperationName.values():
            done = successful = failed = 0
            for block in blocks:
                mine = [
                    op for op in block["operations"]
                    if op["name"] == name and (op.get("executor") or block.get("operator")) == operator
                ]
                if not mine:
                    continue
                done += 1
                if any(op["success"] for op in mine):
                    successful += 1
                if any(not op["success"] for op in mine):
                    failed += 1
            rows.append({"operation": name, "completed": done, "successful": successful, "failed": failed})
        return rows
