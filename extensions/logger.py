# extensions/logger.py
import os, sys, logging, json, uuid, time
from logging.handlers import RotatingFileHandler
from flask import g, request
from werkzeug.exceptions import HTTPException

_REQUEST_ID_KEY = "request_id"


class JsonFormatter(logging.Formatter):
    def format(self, record):
        data = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if hasattr(record, "request_id"):
            data["request_id"] = record.request_id
        if hasattr(record, "operator"):
            data["operator"] = record.operator
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


class RequestIdFilter(logging.Filter):
    def filter(self, record):
        from flask import has_request_context
        if has_request_context():
            record.request_id = getattr(g, _REQUEST_ID_KEY, "-")
        else:
            # background sync thread
            record.request_id = "-"
        return True


def _ensure_request_id():
    if not hasattr(g, _REQUEST_ID_KEY):
        setattr(g, _REQUEST_ID_KEY, request.headers.get("X-Request-Id") or uuid.uuid4().hex)
    return getattr(g, _REQUEST_ID_KEY)


def _configure_root(cfg):
    root = logging.getLogger()
    # handlers are process wide; a second app in the same process reuses them
    if any(getattr(h, "_block_tracker", False) for h in root.handlers):
        return False

    level = getattr(logging, cfg["LOG_LEVEL"].upper(), logging.INFO)
    root.setLevel(level)

    text_fmt = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(request_id)s | %(name)s | %(message)s",
        "%Y-%m-%d %H:%M:%S"
    )
    json_fmt = JsonFormatter()
    fmt = json_fmt if cfg["LOG_JSON"] else text_fmt

    def make_handler(filename, lvl=None):
        h = RotatingFileHandler(
            os.path.join(cfg["LOG_DIR"], filename),
            maxBytes=cfg["LOG_MAX_BYTES"],
            backupCount=cfg["LOG_BACKUP_COUNT"],
            encoding="utf-8"
        )
        h.setLevel(lvl or level)
        h.setFormatter(fmt)
        h.addFilter(RequestIdFilter())
        h._block_tracker = True
        return h

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(fmt)
    console.addFilter(RequestIdFilter())
    console._block_tracker = True
    root.addHandler(console)

    if cfg["LOG_TO_FILE"]:
        os.makedirs(cfg["LOG_DIR"], exist_ok=True)
        root.addHandler(make_handler("app.log"))
        root.addHandler(make_handler("error.log", logging.ERROR))

    # quieten noisy packages
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.INFO)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return True


def init_logger(app):
    if _configure_root(app.config):
        app.logger.info("Logger initialized")

    @app.before_request
    def _before():
        g._req_start = time.time()
        _ensure_request_id()
        app.logger.info(f"REQ {request.method} {request.path} from {request.remote_addr}")

    @app.after_request
    def _after(resp):
        duration = (time.time() - getattr(g, "_req_start", time.time())) * 1000
        resp.headers["X-Request-Id"] = getattr(g, _REQUEST_ID_KEY, "-")
        app.logger.info(f"RESP {request.method} {request.path} {resp.status_code} {duration:.1f}ms")
        return resp

    @app.errorhandler(Exception)
    def _err(e):
        from utils.exceptions import BizError
        from utils.response import json_response
        if isinstance(e, BizError):
            return json_response(code=e.code, message=e.message, data=e.data)
        if isinstance(e, HTTPException):
            code = e.code
            msg = e.description
        else:
            code = 500
            msg = "Internal server error"
            app.logger.exception("UNHANDLED EXCEPTION")
        return json_response(code=code, message=msg)
