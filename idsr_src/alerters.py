"""Alert delivery for threshold crossings."""

import logging
from abc import ABC, abstractmethod

from .config import config
from .exceptions import RemoteStoreError
from .models import DiseaseAlert
from .remote import RemoteStore

logger = logging.getLogger(__name__)


class BaseAlerter(ABC):
    """Abstract base class for alerters."""

    @abstractmethod
    def send_alert(self, alert: DiseaseAlert) -> bool:
        """
        Send a disease alert.

        Args:
            alert: The alert raised by the rule engine

        Returns:
            True if alert was sent successfully, False otherwise
        """
        pass

    @abstractmethod
    def get_alert_count(self) -> int:
        """Return the number of alerts sent."""
        pass


class LogAlerter(BaseAlerter):
    """Writes alerts to the application log."""

    def __init__(self):
        self.alert_count = 0

    def send_alert(self, alert: DiseaseAlert) -> bool:
        logger.warning(f"ALERT [{alert.priority.upper()}] {alert.title}: {alert.message}")
        self.alert_count += 1
        return True

    def get_alert_count(self) -> int:
        return self.alert_count


class RemoteNotificationAlerter(BaseAlerter):
    """Records alerts in the remote notifications table."""

    def __init__(self, remote: RemoteStore, table: str | None = None):
        self.remote = remote
        self.table = table or config.NOTIFICATIONS_TABLE
        self.alert_count = 0

    def send_alert(self, alert: DiseaseAlert) -> bool:
        try:
            self.remote.insert(self.table, {
                "type": "disease_alert",
                "title": alert.title,
                "message": alert.message,
                "priority": alert.priority,
                "disease_code": alert.disease_code,
                "status": "pending",
                "data": alert.to_dict(),
            })
        except RemoteStoreError as e:
            logger.error(f"Could not record alert for {alert.disease_code}: {e}")
            return False

        self.alert_count += 1
        return True

    def get_alert_count(self) -> int:
        return self.alert_count
