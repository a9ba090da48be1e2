from newsdesk.notifications.channel import EventChannel, LogEventChannel, RedisEventChannel
from newsdesk.notifications.dispatcher import NotificationDispatcher

__all__ = ["EventChannel", "LogEventChannel", "NotificationDispatcher", "RedisEventChannel"]
