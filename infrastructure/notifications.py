"""Notification adapters"""
import logging

from domain.notifications import NotificationPort
from domain.value_objects import LimitOverrideAlert

logger = logging.getLogger(__name__)


class LoggingNotifier(NotificationPort):
    """Writes alerts to the application log.

    Stands in for the mail transport, which lives outside this service.
    """

    async def send_limit_override_alert(self, alert: LimitOverrideAlert) -> None:
        logger.warning(
            "Limit override requested by user %s for %s (%s) on %s %s-%s: %s -> %s",
            alert.user_id,
            alert.space_name or alert.space_id,
            alert.space_type,
            alert.date,
            alert.start_time,
            alert.end_time,
            alert.limit_reason,
            ", ".join(alert.recipients),
        )
