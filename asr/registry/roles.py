"""
Role table and threshold validation.

Pure functions over the per-service role table:
- check_agent_params: batch shape checks (length, ordering, zero pairs)
- apply_roles: upsert / delete entries, bounded table size
- recompute: capacity (saturating sum of slots) and deposit (max bond)
- validate_threshold: Byzantine quorum bound
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from .constants import MAX_AGENT_IDS_PER_SERVICE, U32_MAX, U64_MAX
from .errors import ErrorCode, require
from .state import AgentParams, AgentRole


def check_agent_params(agent_ids: Sequence[int], agent_params: Sequence[AgentParams]) -> None:
    """
    Validate one role batch.

    Raises:
        ValidationError(WrongArrayLength): empty batch or length mismatch
        ValidationError(WrongAgentId): ids not strictly increasing
        ValidationError(ZeroValue): exactly one of slots / bond is zero
    """
    require(
        len(agent_ids) > 0 and len(agent_ids) == len(agent_params),
        ErrorCode.WRONG_ARRAY_LENGTH,
        agent_ids=len(agent_ids),
        agent_params=len(agent_params),
    )
    for prev, cur in zip(agent_ids, agent_ids[1:]):
        require(cur > prev, ErrorCode.WRONG_AGENT_ID, previous=prev, current=cur)
    for agent_id, params in zip(agent_ids, agent_params):
        require(0 <= agent_id <= U32_MAX, ErrorCode.INVALID_ARGUMENT, agent_id=agent_id)
        require(
            (params.slots == 0) == (params.bond == 0),
            ErrorCode.ZERO_VALUE,
            agent_id=agent_id,
            slots=params.slots,
            bond=params.bond,
        )
        require(
            0 <= params.slots <= U32_MAX and 0 <= params.bond <= U64_MAX,
            ErrorCode.INVALID_ARGUMENT,
            agent_id=agent_id,
        )


def quorum_threshold(max_num_agent_instances: int) -> int:
    """ceil((2 * max + 1) / 3)"""
    return -(-(2 * max_num_agent_instances + 1) // 3)


def validate_threshold(threshold: int, max_num_agent_instances: int) -> None:
    require(
        threshold >= quorum_threshold(max_num_agent_instances),
        ErrorCode.WRONG_THRESHOLD,
        threshold=threshold,
        quorum=quorum_threshold(max_num_agent_instances),
    )
    require(
        threshold <= max_num_agent_instances,
        ErrorCode.WRONG_THRESHOLD_ABOVE,
        threshold=threshold,
        max_num_agent_instances=max_num_agent_instances,
    )


@dataclass(frozen=True)
class RoleChanges:
    """Outcome of applying one batch to a role table."""
    table: List[AgentRole]
    upserted: List[AgentRole]
    deleted: List[int]


def apply_roles(
    table: Sequence[AgentRole],
    agent_ids: Sequence[int],
    agent_params: Sequence[AgentParams],
    max_agent_ids: int = MAX_AGENT_IDS_PER_SERVICE,
) -> RoleChanges:
    """
    Apply a validated batch to `table` without mutating it.

    A (0, 0) pair deletes the entry (a no-op if absent); anything else
    upserts. Existing entries keep their position, new ones append.
    """
    entries: Dict[int, AgentRole] = {role.agent_id: role for role in table}
    order: List[int] = [role.agent_id for role in table]
    upserted: List[AgentRole] = []
    deleted: List[int] = []

    for agent_id, params in zip(agent_ids, agent_params):
        if params.slots == 0:
            if agent_id in entries:
                del entries[agent_id]
                order.remove(agent_id)
                deleted.append(agent_id)
            continue
        if agent_id not in entries:
            require(
                len(order) < max_agent_ids,
                ErrorCode.MAX_AGENT_ID_PER_SERVICE_REACHED,
                max_agent_ids=max_agent_ids,
            )
            order.append(agent_id)
        role = AgentRole(agent_id=agent_id, slots=params.slots, bond=params.bond)
        entries[agent_id] = role
        upserted.append(role)

    return RoleChanges(table=[entries[i] for i in order], upserted=upserted, deleted=deleted)


def recompute(table: Sequence[AgentRole]) -> Tuple[int, int]:
    """Return (max_num_agent_instances, security_deposit) for a role table."""
    max_num = 0
    deposit = 0
    for role in table:
        max_num = min(max_num + role.slots, U32_MAX)
        deposit = max(deposit, role.bond)
    return max_num, deposit
