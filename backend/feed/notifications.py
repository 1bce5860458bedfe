"""
Notification sinks: fire-and-forget one-line messages for the user.

The feed layer never depends on a notification being delivered.
"""
import logging
from collections import deque

logger = logging.getLogger(__name__)

SUCCESS = 'success'
ERROR = 'error'


class NotificationSink:
    def notify(self, level, text):
        raise NotImplementedError

    def success(self, text):
        self.notify(SUCCESS, text)

    def error(self, text):
        self.notify(ERROR, text)


class LoggingNotifier(NotificationSink):
    def notify(self, level, text):
        logger.log(logging.ERROR if level == ERROR else logging.INFO, '[%s] %s', level, text)


class MessageBuffer(LoggingNotifier):
    """Logs and keeps the most recent messages until someone drains them."""

    def __init__(self, maxlen=20):
        self.messages = deque(maxlen=maxlen)

    def notify(self, level, text):
        super().notify(level, text)
        self.messages.append((level, text))

    def drain(self):
        messages = list(self.messages)
        self.messages.clear()
        return messages

    def last(self):
        return self.messages[-1][1] if self.messages else None
