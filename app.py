# app.py
import json
import logging

import click
from flask import Flask

from config.settings import get_config
from extensions.database import db, migrate
from extensions.logger import init_logger
from controllers.block_controller import block_bp, report_bp
from controllers.sync_controller import sync_bp
from services.block_service import BlockService
from services.sync_scheduler import SyncScheduler
from services.sync_service import SyncService
from services.sync_transport import HttpSyncTransport
from utils.exceptions import BizError
from utils.response import json_response

logger = logging.getLogger(__name__)


def _init_sync(app):
    """Wire the sync engine when a remote peer is configured."""
    remote = app.config.get("SYNC_REMOTE_URL")
    if not remote:
        app.extensions["sync_service"] = None
        app.extensions["sync_scheduler"] = None
        return

    transport = HttpSyncTransport(remote, timeout=app.config["SYNC_TIMEOUT_SECONDS"])
    service = SyncService(transport)
    scheduler = SyncScheduler(
        app,
        service,
        interval=app.config["SYNC_INTERVAL_SECONDS"],
        max_backoff=app.config["SYNC_MAX_BACKOFF_SECONDS"],
    )
    app.extensions["sync_service"] = service
    app.extensions["sync_scheduler"] = scheduler
    if app.config.get("SYNC_AUTO_START"):
        scheduler.start()


def _register_commands(app):
    @app.cli.command("init-db")
    def init_db():
        """Create missing tables."""
        db.create_all()
        click.echo(f"Database ready: {app.config['SQLALCHEMY_DATABASE_URI']}")

    @app.cli.command("sync-now")
    def sync_now():
        """Run one synchronization cycle with the configured peer."""
        service = app.extensions.get("sync_service")
        if service is None:
            raise click.ClickException("SYNC_REMOTE_URL is not configured")
        try:
            report = service.synchronize()
        except BizError as e:
            raise click.ClickException(f"sync failed: {e}")
        click.echo(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))

    @app.cli.command("import-records")
    @click.argument("path", type=click.Path(exists=True, dir_okay=False))
    @click.option("--operator", required=True, help="Acting operator stamped on the imported blocks.")
    def import_records(path, operator):
        """Import a JSON list of block records (all or nothing)."""
        with open(path, encoding="utf-8") as fh:
            try:
                records = json.load(fh)
            except ValueError as e:
                raise click.ClickException(f"{path} is not valid JSON: {e}")
        try:
            stored = BlockService.import_records(records, operator)
        except BizError as e:
            raise click.ClickException(e.message)
        click.echo(f"Imported {len(stored)} blocks")


def create_app(config_name="development"):
    app = Flask(__name__)
    app.config.from_object(get_config(config_name))

    # extensions
    db.init_app(app)
    migrate.init_app(app, db)
    init_logger(app)
    logger.info("database URI: %s", app.config["SQLALCHEMY_DATABASE_URI"])

    if app.config.get("AUTO_CREATE_TABLES"):
        # embedded station database: no separate migration step
        with app.app_context():
            db.create_all()

    # blocks, operations, stats
    app.register_blueprint(block_bp)
    # daily reports
    app.register_blueprint(report_bp)
    # peer exchange + manual sync
    app.register_blueprint(sync_bp)

    _init_sync(app)
    _register_commands(app)

    # error handling
    @app.errorhandler(404)
    def not_found(e):
        return json_response(message="Endpoint not found", code=404)

    @app.errorhandler(500)
    def server_error(e):
        return json_response(message="Internal server error", code=500)

    @app.errorhandler(BizError)
    def _biz_err(e: BizError):
        return json_response(code=e.code, message=e.message, data=e.data)

    return app
