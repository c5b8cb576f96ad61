"""
Service lifecycle kernel.

Standalone state machine with no external dependencies. Every accepted
transition is followed by an invariant check; a transition that would
break an invariant is rejected and the input state is returned untouched.

States:
    NON_EXISTENT -> PRE_REGISTRATION -> ACTIVE_REGISTRATION
        -> FINISHED_REGISTRATION -> DEPLOYED
    TERMINATED_BONDED is reachable from every state after PRE_REGISTRATION
    and returns to PRE_REGISTRATION once the last instance is unbonded.

Usage:
    from asr.registry.kernels import service_lifecycle_fsm_ref as lifecycle

    state = lifecycle.init_state()
    result = lifecycle.step(state, lifecycle.Command(tag='create', args={}))
    if result.ok:
        state = result.state
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

U32_MAX = 2**32 - 1

STATUSES = (
    'NON_EXISTENT',
    'PRE_REGISTRATION',
    'ACTIVE_REGISTRATION',
    'FINISHED_REGISTRATION',
    'DEPLOYED',
    'TERMINATED_BONDED',
)

_TERMINABLE = ('ACTIVE_REGISTRATION', 'FINISHED_REGISTRATION', 'DEPLOYED')


@dataclass(frozen=True)
class State:
    status: str = 'NON_EXISTENT'
    max_num_agent_instances: int = 0
    num_agent_instances: int = 0


@dataclass(frozen=True)
class Command:
    tag: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StepResult:
    ok: bool
    state: Optional[State]
    effects: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


def init_state() -> State:
    return State()


def check_invariants(state: State) -> Tuple[bool, List[str]]:
    failed: List[str] = []
    if state.status not in STATUSES:
        failed.append('status_in_domain')
    if not (0 <= state.max_num_agent_instances <= U32_MAX):
        failed.append('max_in_domain')
    if not (0 <= state.num_agent_instances <= state.max_num_agent_instances):
        failed.append('num_le_max')
    if state.status in ('NON_EXISTENT', 'PRE_REGISTRATION') and state.num_agent_instances != 0:
        failed.append('unstaffed_before_registration')
    if state.status in ('FINISHED_REGISTRATION', 'DEPLOYED') and (
        state.num_agent_instances != state.max_num_agent_instances
    ):
        failed.append('fully_staffed_after_registration')
    return (not failed, failed)


def _reject(error: str) -> StepResult:
    return StepResult(ok=False, state=None, effects={}, error=error)


def _int_arg(cmd: Command, name: str) -> Optional[int]:
    value = cmd.args.get(name)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _transition(state: State, cmd: Command) -> StepResult:
    tag = cmd.tag
    status = state.status

    if tag == 'create':
        if status != 'NON_EXISTENT':
            return _reject('create: service already exists')
        return StepResult(True, State('PRE_REGISTRATION', 0, 0), {'status': 'PRE_REGISTRATION'})

    if tag == 'configure':
        max_num = _int_arg(cmd, 'max_num_agent_instances')
        if status != 'PRE_REGISTRATION':
            return _reject('configure: requires PRE_REGISTRATION')
        if max_num is None or not (0 <= max_num <= U32_MAX):
            return _reject('configure: max_num_agent_instances out of domain')
        return StepResult(True, replace(state, max_num_agent_instances=max_num), {})

    if tag == 'activate_registration':
        if status != 'PRE_REGISTRATION':
            return _reject('activate_registration: requires PRE_REGISTRATION')
        if state.max_num_agent_instances == 0:
            return _reject('activate_registration: no agent slots configured')
        return StepResult(
            True, replace(state, status='ACTIVE_REGISTRATION'), {'status': 'ACTIVE_REGISTRATION'}
        )

    if tag == 'register_instances':
        count = _int_arg(cmd, 'count')
        if status != 'ACTIVE_REGISTRATION':
            return _reject('register_instances: requires ACTIVE_REGISTRATION')
        if count is None or count <= 0:
            return _reject('register_instances: count must be positive')
        num = state.num_agent_instances + count
        if num > state.max_num_agent_instances:
            return _reject('register_instances: capacity exceeded')
        finished = num == state.max_num_agent_instances
        new_status = 'FINISHED_REGISTRATION' if finished else status
        return StepResult(
            True,
            replace(state, status=new_status, num_agent_instances=num),
            {'status': new_status, 'finished': finished},
        )

    if tag == 'deploy':
        if status != 'FINISHED_REGISTRATION':
            return _reject('deploy: requires FINISHED_REGISTRATION')
        return StepResult(True, replace(state, status='DEPLOYED'), {'status': 'DEPLOYED'})

    if tag == 'terminate':
        if status not in _TERMINABLE:
            return _reject(f'terminate: not allowed from {status}')
        new_status = 'TERMINATED_BONDED' if state.num_agent_instances > 0 else 'PRE_REGISTRATION'
        return StepResult(True, replace(state, status=new_status), {'status': new_status})

    if tag == 'unbond':
        count = _int_arg(cmd, 'count')
        if status != 'TERMINATED_BONDED':
            return _reject('unbond: requires TERMINATED_BONDED')
        if count is None or count <= 0:
            return _reject('unbond: count must be positive')
        num = max(0, state.num_agent_instances - count)
        new_status = 'PRE_REGISTRATION' if num == 0 else status
        return StepResult(
            True,
            replace(state, status=new_status, num_agent_instances=num),
            {'status': new_status},
        )

    return _reject(f'unknown command: {tag}')


def step(state: State, cmd: Command) -> StepResult:
    """Apply `cmd` to `state`. Rejections never mutate the input."""
    result = _transition(state, cmd)
    if not result.ok or result.state is None:
        return result
    ok, failed = check_invariants(result.state)
    if not ok:
        return _reject(f'{cmd.tag}: invariant violation {failed}')
    return result
