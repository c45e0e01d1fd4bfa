# ─────────────────────────────────────────────────────────────────
# alerts.py — Logging Setup & Status-Change Alerts
#
# configure_logging() is called once at startup; every module then
# uses its own named logger ("registry", "sessions", "health" ...)
# so each line says where it came from.
#
# notify_status_change() is what the health engine calls when a
# server flips between Up and Down. Today it only logs; other alert
# channels (email, Slack, webhook) would be added here.
# ─────────────────────────────────────────────────────────────────

import logging

LOG_FORMAT = "%(asctime)s — %(levelname)s — [%(name)s] — %(message)s"

logger = logging.getLogger("alerts")


def configure_logging(level: str = "INFO"):
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def notify_status_change(server_name: str, previous: str, current: str, reason: str):
    """
    Announces a server transition.

    Up → Down is a warning, Down → Up an info line.
    """

    alert_payload = {
        "server": server_name,
        "from": previous,
        "to": current,
        "reason": reason,
    }

    if current == "Down":
        logger.warning(f"🚨 SERVER DOWN: {alert_payload}")
    else:
        logger.info(f"✅ SERVER RECOVERED: {alert_payload}")
