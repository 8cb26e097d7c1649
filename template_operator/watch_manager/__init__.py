"""
The watch manager drives reconciles: it discovers custom resources, queues
their keys, and schedules retries
"""

# Local
from .controller_manager import ControllerManager
from .work_queue import RateLimitingQueue
