"""
Utilities for the device heartbeat worker.
"""

from .sqs_consumer import QueueMessage, SqsConsumer

__all__ = ["QueueMessage", "SqsConsumer"]
