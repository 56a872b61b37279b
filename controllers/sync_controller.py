from flask import Blueprint, current_app, request

from services.peer_sync_service import PeerSyncService
from utils.exceptions import BizError, SyncInProgressError
from utils.response import json_response, raw_json_response


sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


@sync_bp.errorhandler(BizError)
def _biz_error(e: BizError):
    return json_response(code=e.code, message=e.message, data=e.data), e.code


def _sync_service():
    return current_app.extensions.get("sync_service")


@sync_bp.post("")
def exchange():
    """Peer side of the exchange; the body is the bare change set, no envelope."""
    server_changes = PeerSyncService.sync(request.get_json(silent=True))
    return raw_json_response(server_changes)


@sync_bp.post("/run")
def run_now():
    service = _sync_service()
    if service is None:
        return json_response(code=400, message="No sync remote configured (SYNC_REMOTE_URL)")
    try:
        report = service.synchronize()
    except SyncInProgressError:
        raise
    except BizError as e:
        report = service.last_report
        return json_response(code=e.code, message=e.message,
                             data=report.to_dict() if report else None)
    return json_response(message="Synchronized", data=report.to_dict())


@sync_bp.get("/status")
def status():
    service = _sync_service()
    scheduler = current_app.extensions.get("sync_scheduler")
    report = service.last_report if service else None
    return json_response(data={
        "configured": service is not None,
        "remote": current_app.config.get("SYNC_REMOTE_URL") or None,
        "state": service.state.value if service else None,
        "schedulerRunning": bool(scheduler and scheduler.running),
        "lastReport": report.to_dict() if report else None,
    })
