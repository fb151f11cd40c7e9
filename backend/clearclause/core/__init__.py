"""
Core runtime: model residency, admission control and metrics.
"""

from .admission import AdmissionQueue
from .backends import HuggingFaceModelBackend, ModelBackend
from .metrics import MetricsCollector
from .resource_manager import ResourceManager, create_resource_manager

__all__ = [
    "AdmissionQueue",
    "HuggingFaceModelBackend",
    "ModelBackend",
    "MetricsCollector",
    "ResourceManager",
    "create_resource_manager"
]
