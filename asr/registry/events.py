"""
Registry events - success records emitted by registry operations.

Events are buffered in the EventLog while an operation runs. The buffer is
rolled back with the rest of the operation on failure; listeners are only
notified once the operation commits.

Listener exceptions are caught and logged, never propagated: a committed
operation stays committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, List, Optional, Tuple

from .keys import AccountId

logger = logging.getLogger(__name__)


def _plain(value: Any) -> Any:
    if isinstance(value, AccountId):
        return value.hex()
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass(frozen=True)
class RegistryEvent:
    """Base class; subclasses are plain frozen dataclasses."""

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        payload = {f.name: _plain(getattr(self, f.name)) for f in fields(self)}
        payload["event"] = self.name
        return payload


# =============================================================================
# Service lifecycle
# =============================================================================

@dataclass(frozen=True)
class ServiceCreated(RegistryEvent):
    service_id: int
    config_hash: bytes


@dataclass(frozen=True)
class ServiceUpdated(RegistryEvent):
    service_id: int
    config_hash: bytes


@dataclass(frozen=True)
class AgentIdsRegistered(RegistryEvent):
    service_id: int
    agent_ids: Tuple[int, ...]
    max_num_agent_instances: int
    security_deposit: int


@dataclass(frozen=True)
class RegistrationActivated(RegistryEvent):
    service_id: int
    deposit: int


@dataclass(frozen=True)
class InstanceRegistered(RegistryEvent):
    service_id: int
    operator: AccountId
    agent_instance: AccountId
    agent_id: int


@dataclass(frozen=True)
class BondDeposited(RegistryEvent):
    service_id: int
    operator: AccountId
    amount: int
    total_bond: int


@dataclass(frozen=True)
class ServiceDeployed(RegistryEvent):
    service_id: int
    multisig: AccountId


@dataclass(frozen=True)
class ServiceTerminated(RegistryEvent):
    service_id: int
    state: str


@dataclass(frozen=True)
class Refunded(RegistryEvent):
    service_id: int
    receiver: AccountId
    amount: int


@dataclass(frozen=True)
class OperatorUnbonded(RegistryEvent):
    service_id: int
    operator: AccountId
    num_instances: int
    refund: int


# =============================================================================
# Slashing
# =============================================================================

@dataclass(frozen=True)
class OperatorSlashed(RegistryEvent):
    service_id: int
    operator: AccountId
    amount: int


@dataclass(frozen=True)
class Drained(RegistryEvent):
    drainer: AccountId
    amount: int


# =============================================================================
# Administration
# =============================================================================

@dataclass(frozen=True)
class OwnerUpdated(RegistryEvent):
    new_owner: AccountId


@dataclass(frozen=True)
class ManagerUpdated(RegistryEvent):
    new_manager: AccountId


@dataclass(frozen=True)
class DrainerUpdated(RegistryEvent):
    new_drainer: AccountId


@dataclass(frozen=True)
class BaseUriChanged(RegistryEvent):
    base_uri: str


@dataclass(frozen=True)
class MultisigPermissionChanged(RegistryEvent):
    multisig: AccountId
    allowed: bool


EventListener = Callable[[RegistryEvent], None]


class EventLog:
    """Append-only event log with transactional pending buffer."""

    def __init__(self) -> None:
        self._committed: List[RegistryEvent] = []
        self._pending: List[RegistryEvent] = []
        self._listeners: List[EventListener] = []

    @property
    def events(self) -> List[RegistryEvent]:
        return list(self._committed)

    def subscribe(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def emit(self, event: RegistryEvent) -> None:
        self._pending.append(event)

    def mark(self) -> int:
        return len(self._pending)

    def rollback(self, mark: int = 0) -> None:
        del self._pending[mark:]

    def commit(self) -> List[RegistryEvent]:
        committed, self._pending = self._pending, []
        self._committed.extend(committed)
        for event in committed:
            logger.info("event %s", event.name, extra={"context": event.to_dict()})
            for listener in self._listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception("event listener failed for %s", event.name)
        return committed

    def of_type(self, event_type: type, since: Optional[int] = None) -> List[RegistryEvent]:
        source = self._committed if since is None else self._committed[since:]
        return [e for e in source if isinstance(e, event_type)]
