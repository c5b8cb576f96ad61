"""
Pure state-machine kernels.

Each kernel is standalone with no external dependencies and checks its
invariants on every transition.

Usage:
    from asr.registry.kernels import service_lifecycle_fsm_ref as lifecycle

    state = lifecycle.init_state()
    result = lifecycle.step(state, lifecycle.Command(tag='create', args={}))
    if result.ok:
        state = result.state
"""

from . import service_lifecycle_fsm_ref

__all__ = [
    'service_lifecycle_fsm_ref',
]
