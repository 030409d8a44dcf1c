"""
Check-in session orchestration.

- PipelineStateMachine: idle -> capturing -> processing -> scoring -> complete
- CheckInPipeline: runs one user's recordings through the whole pipeline
"""

from .state_machine import PipelineState, PipelineStateMachine
from .check_in import CheckInPipeline, CheckInResult

__all__ = [
    'PipelineState',
    'PipelineStateMachine',
    'CheckInPipeline',
    'CheckInResult',
]
