"""
Relocalization Pipeline Module

Runtime wiring of the relocalization node: atomic handoff slots, the result
store, periodic tasks, transport interfaces and the node itself.
"""

from .handoff import AtomicReference
from .result_store import ResultStore
from .scheduler import PeriodicTask
from .interfaces import (
    ScanMessage,
    TransformSink,
    LoggingTransformSink,
    CollectingTransformSink,
    FileReplayScanSource,
)
from .node import RelocalizationNode

__all__ = [
    "AtomicReference",
    "ResultStore",
    "PeriodicTask",
    "ScanMessage",
    "TransformSink",
    "LoggingTransformSink",
    "CollectingTransformSink",
    "FileReplayScanSource",
    "RelocalizationNode",
]
