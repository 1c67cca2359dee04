"""
Service layer for push notifications.
"""

from .engine import PushEngine
from .manual_send import ManualSendError, ManualSender
from .scheduler import JobScheduler

__all__ = ["PushEngine", "ManualSendError", "ManualSender", "JobScheduler"]
