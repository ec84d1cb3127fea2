"""Domain Notification Port"""
from abc import ABC, abstractmethod

from domain.value_objects import LimitOverrideAlert


class NotificationPort(ABC):
    """Outbound side effects visible outside the booking engine"""

    @abstractmethod
    async def send_limit_override_alert(self, alert: LimitOverrideAlert) -> None:
        """Tell admins a user asked to exceed a booking limit"""
        pass
