"""
Sync Module - Worker Coordination

Admission control for worker output and supervision of finished workers.
"""

from .admission import AdmissionSemaphore, SemaphoreNamespace, generate_semaphore_name
from .reaper import Reaper

__all__ = [
    'AdmissionSemaphore',
    'SemaphoreNamespace',
    'generate_semaphore_name',
    'Reaper',
]
