"""
Capsule video engine: turns a capsule's contributor messages into one
1920x1080 tribute video (title slide, one segment per message), publishes it
and acknowledges the queue job that asked for it.
"""

from .config import WorkerConfig
from .worker import CapsuleWorker

__all__ = ["CapsuleWorker", "WorkerConfig"]
