from notifications.push import ExpoPushClient
from notifications.sender import FanoutResult, NotificationSender, notification_data

__all__ = ["ExpoPushClient", "FanoutResult", "NotificationSender", "notification_data"]
