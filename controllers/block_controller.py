from flask import Blueprint, request

from controllers.auth_helpers import get_current_operator, operator_required
from services.block_service import BlockService
from utils.exceptions import BizError, NotFoundError
from utils.response import json_response


block_bp = Blueprint("block", __name__, url_prefix="/api/blocks")
report_bp = Blueprint("report", __name__, url_prefix="/api/reports")


@block_bp.errorhandler(BizError)
@report_bp.errorhandler(BizError)
def _biz_error(e: BizError):
    return json_response(code=e.code, message=e.message, data=e.data), e.code


def _json_body():
    data = request.get_json(silent=True)
    return data if data is not None else {}


@block_bp.get("")
def list_blocks():
    args = request.args
    items = BlockService.list_blocks(
        operator=args.get("operator") or None,
        status=args.get("status") or None,
        model_type=args.get("modelType") or None,
    )
    return json_response(data={"items": items, "total": len(items)})


@block_bp.post("")
@operator_required()
def create_block():
    data = _json_body()
    if not isinstance(data, dict):
        return json_response(code=400, message="Body must be a JSON object")
    stored = BlockService.add_block(data, get_current_operator())
    return json_response(message="Block created", data=BlockService.get_block_by_id(stored["id"]))


@block_bp.get("/stats")
def operations_stats():
    stats = BlockService.get_operations_stats(request.args.get("start"), request.args.get("end"))
    return json_response(data=stats)


@block_bp.post("/import")
@operator_required()
def import_records():
    data = _json_body()
    records = data.get("records") if isinstance(data, dict) else data
    stored = BlockService.import_records(records, get_current_operator())
    return json_response(
        message=f"Imported {len(stored)} blocks",
        data={"imported": len(stored), "ids": [b["id"] for b in stored]},
    )


@block_bp.get("/<block_id>")
def get_block(block_id: str):
    return json_response(data=BlockService.get_block_by_id(block_id))


@block_bp.put("/<block_id>")
@operator_required()
def update_block(block_id: str):
    data = _json_body()
    if not isinstance(data, dict):
        return json_response(code=400, message="Body must be a JSON object")
    BlockService.update_block(block_id, data, get_current_operator())
    return json_response(message="Block updated", data=BlockService.get_block_by_id(block_id))


@block_bp.delete("/<block_id>")
@operator_required()
def delete_block(block_id: str):
    if not BlockService.delete_block(block_id, get_current_operator()):
        raise NotFoundError(f"Block {block_id} not found")
    return json_response(message="Block deleted", data={"id": block_id})


@block_bp.post("/<block_id>/operations")
@operator_required()
def add_operation(block_id: str):
    data = _json_body()
    if not isinstance(data, dict):
        return json_response(code=400, message="Body must be a JSON object")
    block = BlockService.add_operation(block_id, data, get_current_operator())
    return json_response(message="Operation recorded", data=block)


@report_bp.get("/daily")
def daily_report():
    rows = BlockService.get_daily_report(request.args.get("date"))
    return json_response(data={"items": rows, "total": len(rows)})


@report_bp.get("/operator-daily")
def operator_daily_report():
    operator = request.args.get("operator") or request.headers.get("X-Operator")
    rows = BlockService.get_operator_daily_report(operator, request.args.get("date"))
    return json_response(data={"operator": operator, "items": rows})
