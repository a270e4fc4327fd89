"""
Alert Ledger
Append-only alert history plus the set of currently open dedupe keys
"""
import itertools
import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional

from fleetwatch.errors import NotFound
from fleetwatch.models.alert import Alert, AlertKind, make_dedupe_key
from fleetwatch.schemas import AlertFilter

logger = logging.getLogger(__name__)


def _sort_key(alert: Alert):
    return (alert.raised_at, alert.id)


class AlertLedger:
    """Dedupes, timestamps and retains alerts.

    At most one alert per dedupe key is open at a time. Clearing a key only makes
    it available again; the historical record stays in the ledger.
    """

    def __init__(self):
        self._alerts: Dict[int, Alert] = {}
        self._open: Dict[str, int] = {}  # dedupe key -> alert id
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def raise_alert(self, vessel_id: str, kind: AlertKind, message: str, now: datetime) -> Optional[Alert]:
        """Create an alert, or return None if one is already open for the key"""
        key = make_dedupe_key(vessel_id, kind)
        with self._lock:
            if key in self._open:
                logger.debug(f"Suppressed {key}: alert {self._open[key]} still open")
                return None
            alert = Alert(
                id=next(self._ids),
                vessel_id=vessel_id,
                kind=kind,
                message=message,
                raised_at=now,
            )
            self._alerts[alert.id] = alert
            self._open[key] = alert.id

        logger.info(f"🚨 Alert {alert.id} {alert.kind.value} for {vessel_id}: {message}")
        return alert

    def clear(self, vessel_id: str, kind: AlertKind) -> bool:
        """Make the dedupe key available again; returns whether it was open"""
        key = make_dedupe_key(vessel_id, kind)
        with self._lock:
            alert_id = self._open.pop(key, None)
        if alert_id is not None:
            logger.info(f"Cleared {key} (alert {alert_id})")
        return alert_id is not None

    def is_open(self, alert: Alert) -> bool:
        with self._lock:
            return self._open.get(alert.dedupe_key) == alert.id

    def get(self, alert_id: int) -> Alert:
        try:
            return self._alerts[alert_id]
        except KeyError:
            raise NotFound(f"Alert {alert_id} not found") from None

    def list_alerts(self, filter: Optional[AlertFilter] = None) -> List[Alert]:
        """Alerts newest first: raised_at descending, ties by id descending"""
        filter = filter or AlertFilter()
        with self._lock:
            alerts = list(self._alerts.values())
            open_ids = set(self._open.values())

        if filter.vessel_id is not None:
            alerts = [a for a in alerts if a.vessel_id == filter.vessel_id]
        if filter.kind is not None:
            alerts = [a for a in alerts if a.kind == filter.kind]
        if filter.open_only:
            alerts = [a for a in alerts if a.id in open_ids]

        alerts.sort(key=_sort_key, reverse=True)
        if filter.limit is not None:
            alerts = alerts[:filter.limit]
        return alerts

    def open_keys(self) -> List[str]:
        with self._lock:
            return list(self._open.keys())

    def __len__(self) -> int:
        return len(self._alerts)
