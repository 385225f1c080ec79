"""
Push assignment notices to connected drivers and technicians.

Senders are registered per recipient address (one per open websocket). A
notice is best effort: no connection or a failing sender is logged and
reported back as ``False``, never raised.
"""

import logging
import threading
from typing import Callable, Dict, List

from .prometheus_metrics import prometheus_metrics

logger = logging.getLogger("jobtracker.notifications")

Sender = Callable[[dict], None]


class NotificationHub:

    def __init__(self):
        self._senders: Dict[str, List[Sender]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _norm(address: str) -> str:
        return (address or "").strip().lower()

    def register(self, address: str, sender: Sender) -> None:
        with self._lock:
            self._senders.setdefault(self._norm(address), []).append(sender)

    def unregister(self, address: str, sender: Sender) -> None:
        with self._lock:
            senders = self._senders.get(self._norm(address), [])
            if sender in senders:
                senders.remove(sender)
            if not senders:
                self._senders.pop(self._norm(address), None)

    def connected(self, address: str) -> int:
        with self._lock:
            return len(self._senders.get(self._norm(address), []))

    def notify_form_assigned(self, recipient: str, job_id: str, form_type: str) -> bool:
        if not recipient:
            return False
        with self._lock:
            senders = list(self._senders.get(self._norm(recipient), []))
        if not senders:
            prometheus_metrics.increment_notification("no_connection")
            logger.info("No open connection for recipient", extra={
                "component": "notifications", "recipient": recipient, "job_id": job_id})
            return False
        message = {"type": "form_assigned", "job_id": job_id, "form_type": form_type}
        delivered = False
        for send in senders:
            try:
                send(message)
                delivered = True
            except Exception as e:
                logger.warning(f"Notification send failed: {e}", extra={
                    "component": "notifications", "recipient": recipient, "job_id": job_id})
        prometheus_metrics.increment_notification("delivered" if delivered else "failed")
        return delivered


notification_hub = NotificationHub()
