"""WSGI entry point for production deployment."""
import sys
import os
import logging
from datetime import timedelta
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).parent))

from config import load_config
from utils.logger import setup_logging, SystemLogger
from models.database import Database
from realtime.hub import RealtimeHub
from alerts.channels import build_adapters
from alerts.cooldown import CooldownManager
from alerts.dispatcher import NotificationDispatcher
from monitor.orchestrator import AlertOrchestrator
from monitor.scheduler import OrchestratorScheduler
from web.app import create_app

logger = logging.getLogger("alertmonitor.wsgi")

config = load_config(os.environ.get("ALERT_MONITOR_CONFIG"))
setup_logging(config["logging"]["level"])

hub = RealtimeHub(default_buffer=config["realtime"]["buffer_size"])
db = Database(config["database"]["path"], publisher=hub)
db.connect()
system_log = SystemLogger(db)

orch_cfg = config["orchestrator"]
orchestrator = AlertOrchestrator(
    rule_store=db,
    metric_store=db,
    cooldowns=CooldownManager(db, timedelta(minutes=config["cooldown"]["default_minutes"])),
    dispatcher=NotificationDispatcher(
        build_adapters(config), db, system_log,
        channel_timeout=config["dispatch"]["channel_timeout"],
    ),
    system_log=system_log,
    lookback=timedelta(minutes=orch_cfg["lookback_minutes"]),
    max_parallel=orch_cfg["max_parallel"],
    tick_deadline=orch_cfg["tick_deadline_seconds"],
)

engines = {"db": db, "orchestrator": orchestrator, "hub": hub}

app = create_app(config, engines)

# Ticks run inside the web process unless disabled (e.g. a separate `main.py run` worker)
if os.environ.get("ALERT_MONITOR_SCHEDULER", "1") != "0":
    OrchestratorScheduler(orchestrator, interval_seconds=orch_cfg["interval_seconds"]).start()
    logger.info("Background scheduler started")
