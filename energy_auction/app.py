import logging
import os
import sys
from importlib import import_module

from flask import Flask
from flask_cors import CORS

if __name__ == "__main__" and __package__ is None:
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    __package__ = "energy_auction"
_PACKAGE_ROOT = __package__.split(".")[0]

from .config import LOG_LEVEL
from .errors import setup_error_handlers
from .services.clearing import ClearingOrchestrator

logger = logging.getLogger(__name__)


def _load_blueprints():
    blueprint_specs = [
        ("timeslots", "timeslots_bp"),
    ]
    blueprints = []
    for module_name, attr in blueprint_specs:
        module = import_module(f"{_PACKAGE_ROOT}.routes.{module_name}")
        blueprints.append(getattr(module, attr))
    return blueprints


def _log_event(event: str, payload: dict) -> None:
    logger.info("[EVENT] %s timeslot=%s price=%s volume=%s",
                event, payload.get("timeslotId"), payload.get("clearingPrice"), payload.get("clearedQuantity"))


def create_app(store=None, publish=None) -> Flask:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if store is None:
        from .db import MySQLRecordStore, init_all_tables
        init_all_tables()
        store = MySQLRecordStore()

    app = Flask(__name__)
    setup_error_handlers(app)
    CORS(app)
    app.extensions['clearing_orchestrator'] = ClearingOrchestrator(store, publish=publish or _log_event)
    for blueprint in _load_blueprints():
        app.register_blueprint(blueprint)
    return app


if __name__ == "__main__":
    from .config import CLEARING_INTERVAL_SECONDS
    from .services.clearing_scheduler import ClearingScheduler

    app = create_app()
    scheduler = ClearingScheduler(app.extensions['clearing_orchestrator'], interval=CLEARING_INTERVAL_SECONDS)
    scheduler.start()
    try:
        app.run(host="0.0.0.0", port=5000, debug=False)
    finally:
        scheduler.stop()
