"""Declarative base for the local heartbeat buffer database."""

from sqlalchemy.orm import declarative_base

HeartbeatBufferBase = declarative_base()

__all__ = ["HeartbeatBufferBase"]
