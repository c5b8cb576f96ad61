"""
Registry data model.

Typed records persisted through the RecordStore. Each record knows:
- TAG / SCHEMA_VERSION: codec identity
- SPACE: bytes reserved when the record is allocated
- derive_address(book): where it must live, computed from its own key
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, ClassVar, Dict, List

from .addresses import AddressBook, DerivedAddress
from .constants import (
    AGENT_IDS_INDEX_SPACE,
    AGENT_INSTANCE_SPACE,
    AGENT_PARAM_SPACE,
    AGENT_SLOT_SPACE,
    INSTANCE_CLAIM_SPACE,
    INSTANCES_INDEX_SPACE,
    MULTISIG_WHITELIST_SPACE,
    OPERATOR_AGENT_INSTANCE_SPACE,
    OPERATOR_BOND_SPACE,
    REGISTRY_SPACE,
    REGISTRY_VERSION,
    SERVICE_SPACE,
)
from .keys import AccountId


class ServiceState(IntEnum):
    """Service lifecycle states."""
    NON_EXISTENT = 0
    PRE_REGISTRATION = 1
    ACTIVE_REGISTRATION = 2
    FINISHED_REGISTRATION = 3
    DEPLOYED = 4
    TERMINATED_BONDED = 5


def _ids(values: List[AccountId]) -> List[str]:
    return [v.hex() for v in values]


def _from_ids(values: List[str]) -> List[AccountId]:
    return [AccountId.from_hex(v) for v in values]


@dataclass(frozen=True)
class AgentParams:
    """Slot capacity and per-instance bond for one role. (0, 0) deletes."""
    slots: int
    bond: int


@dataclass(frozen=True)
class AgentRole:
    """Role table entry."""
    agent_id: int
    slots: int
    bond: int

    def to_dict(self) -> Dict[str, Any]:
        return {"agent_id": self.agent_id, "slots": self.slots, "bond": self.bond}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentRole":
        return cls(agent_id=int(data["agent_id"]), slots=int(data["slots"]), bond=int(data["bond"]))


# =============================================================================
# Registry level
# =============================================================================

@dataclass
class RegistryRecord:
    """The registry root: roles, counters, penalty pool, lock."""

    TAG: ClassVar[str] = "ServiceRegistry"
    SCHEMA_VERSION: ClassVar[int] = 1
    SPACE: ClassVar[int] = REGISTRY_SPACE

    name: str
    symbol: str
    base_uri: str
    owner: AccountId
    manager: AccountId
    drainer: AccountId
    wallet_key: AccountId
    wallet_bump: int
    slashed_funds: int = 0
    total_supply: int = 0
    version: str = REGISTRY_VERSION
    locked: bool = False

    def derive_address(self, book: AddressBook) -> DerivedAddress:
        return book.registry()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "symbol": self.symbol,
            "base_uri": self.base_uri,
            "owner": self.owner.hex(),
            "manager": self.manager.hex(),
            "drainer": self.drainer.hex(),
            "wallet_key": self.wallet_key.hex(),
            "wallet_bump": self.wallet_bump,
            "slashed_funds": self.slashed_funds,
            "total_supply": self.total_supply,
            "version": self.version,
            "locked": self.locked,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistryRecord":
        return cls(
            name=data["name"],
            symbol=data["symbol"],
            base_uri=data["base_uri"],
            owner=AccountId.from_hex(data["owner"]),
            manager=AccountId.from_hex(data["manager"]),
            drainer=AccountId.from_hex(data["drainer"]),
            wallet_key=AccountId.from_hex(data["wallet_key"]),
            wallet_bump=int(data["wallet_bump"]),
            slashed_funds=int(data.get("slashed_funds", 0)),
            total_supply=int(data.get("total_supply", 0)),
            version=data.get("version", REGISTRY_VERSION),
            locked=bool(data.get("locked", False)),
        )


@dataclass
class MultisigWhitelistRecord:
    """Authorized multisig implementation ids."""

    TAG: ClassVar[str] = "RegistryMultisig"
    SCHEMA_VERSION: ClassVar[int] = 1
    SPACE: ClassVar[int] = MULTISIG_WHITELIST_SPACE

    registry: AccountId
    multisigs: List[AccountId] = field(default_factory=list)

    def derive_address(self, book: AddressBook) -> DerivedAddress:
        return book.multisig_whitelist(self.registry)

    def to_dict(self) -> Dict[str, Any]:
        return {"registry": self.registry.hex(), "multisigs": _ids(self.multisigs)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MultisigWhitelistRecord":
        return cls(
            registry=AccountId.from_hex(data["registry"]),
            multisigs=_from_ids(data.get("multisigs", [])),
        )


# =============================================================================
# Service level
# =============================================================================

@dataclass
class ServiceRecord:
    TAG: ClassVar[str] = "ServiceAccount"
    SCHEMA_VERSION: ClassVar[int] = 1
    SPACE: ClassVar[int] = SERVICE_SPACE

    service_id: int
    service_owner: AccountId
    config_hash: bytes
    threshold: int = 0
    max_num_agent_instances: int = 0
    num_agent_instances: int = 0
    security_deposit: int = 0
    multisig: AccountId = field(default_factory=AccountId.zero)
    state: ServiceState = ServiceState.NON_EXISTENT

    def derive_address(self, book: AddressBook) -> DerivedAddress:
        return book.service(self.service_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "service_owner": self.service_owner.hex(),
            "config_hash": self.config_hash.hex(),
            "threshold": self.threshold,
            "max_num_agent_instances": self.max_num_agent_instances,
            "num_agent_instances": self.num_agent_instances,
            "security_deposit": self.security_deposit,
            "multisig": self.multisig.hex(),
            "state": int(self.state),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceRecord":
        return cls(
            service_id=int(data["service_id"]),
            service_owner=AccountId.from_hex(data["service_owner"]),
            config_hash=bytes.fromhex(data["config_hash"]),
            threshold=int(data["threshold"]),
            max_num_agent_instances=int(data["max_num_agent_instances"]),
            num_agent_instances=int(data["num_agent_instances"]),
            security_deposit=int(data["security_deposit"]),
            multisig=AccountId.from_hex(data["multisig"]),
            state=ServiceState(int(data["state"])),
        )


@dataclass
class AgentParamRecord:
    TAG: ClassVar[str] = "AgentParamAccount"
    SCHEMA_VERSION: ClassVar[int] = 1
    SPACE: ClassVar[int] = AGENT_PARAM_SPACE

    service_id: int
    agent_id: int
    slots: int
    bond: int

    def derive_address(self, book: AddressBook) -> DerivedAddress:
        return book.agent_param(self.service_id, self.agent_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "agent_id": self.agent_id,
            "slots": self.slots,
            "bond": self.bond,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentParamRecord":
        return cls(
            service_id=int(data["service_id"]),
            agent_id=int(data["agent_id"]),
            slots=int(data["slots"]),
            bond=int(data["bond"]),
        )


@dataclass
class AgentIdsIndexRecord:
    """Ordered role table for one service, unique by agent id."""

    TAG: ClassVar[str] = "ServiceAgentIdsIndex"
    SCHEMA_VERSION: ClassVar[int] = 1
    SPACE: ClassVar[int] = AGENT_IDS_INDEX_SPACE

    service_id: int
    agent_ids: List[AgentRole] = field(default_factory=list)

    def derive_address(self, book: AddressBook) -> DerivedAddress:
        return book.agent_ids_index(self.service_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "agent_ids": [role.to_dict() for role in self.agent_ids],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentIdsIndexRecord":
        return cls(
            service_id=int(data["service_id"]),
            agent_ids=[AgentRole.from_dict(d) for d in data.get("agent_ids", [])],
        )


@dataclass
class SlotCounterRecord:
    TAG: ClassVar[str] = "ServiceAgentSlotCounterAccount"
    SCHEMA_VERSION: ClassVar[int] = 1
    SPACE: ClassVar[int] = AGENT_SLOT_SPACE

    service_id: int
    agent_id: int
    count: int = 0

    def derive_address(self, book: AddressBook) -> DerivedAddress:
        return book.agent_slot(self.service_id, self.agent_id)

    def to_dict(self) -> Dict[str, Any]:
        return {"service_id": self.service_id, "agent_id": self.agent_id, "count": self.count}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SlotCounterRecord":
        return cls(
            service_id=int(data["service_id"]),
            agent_id=int(data["agent_id"]),
            count=int(data["count"]),
        )


@dataclass
class ServiceInstancesIndexRecord:
    TAG: ClassVar[str] = "ServiceAgentInstancesIndex"
    SCHEMA_VERSION: ClassVar[int] = 1
    SPACE: ClassVar[int] = INSTANCES_INDEX_SPACE

    service_id: int
    agent_instances: List[AccountId] = field(default_factory=list)

    def derive_address(self, book: AddressBook) -> DerivedAddress:
        return book.service_instances_index(self.service_id)

    def to_dict(self) -> Dict[str, Any]:
        return {"service_id": self.service_id, "agent_instances": _ids(self.agent_instances)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceInstancesIndexRecord":
        return cls(
            service_id=int(data["service_id"]),
            agent_instances=_from_ids(data.get("agent_instances", [])),
        )


@dataclass
class AgentInstanceRecord:
    """Binds one instance to one role within one service."""

    TAG: ClassVar[str] = "ServiceAgentInstanceAccount"
    SCHEMA_VERSION: ClassVar[int] = 1
    SPACE: ClassVar[int] = AGENT_INSTANCE_SPACE

    service_id: int
    agent_id: int
    agent_instance: AccountId

    def derive_address(self, book: AddressBook) -> DerivedAddress:
        return book.agent_instance(self.service_id, self.agent_id, self.agent_instance)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "agent_id": self.agent_id,
            "agent_instance": self.agent_instance.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentInstanceRecord":
        return cls(
            service_id=int(data["service_id"]),
            agent_id=int(data["agent_id"]),
            agent_instance=AccountId.from_hex(data["agent_instance"]),
        )


# =============================================================================
# Operator level
# =============================================================================

@dataclass
class OperatorAgentInstanceRecord:
    """Proof that `operator` registered `agent_instance`."""

    TAG: ClassVar[str] = "OperatorAgentInstanceAccount"
    SCHEMA_VERSION: ClassVar[int] = 1
    SPACE: ClassVar[int] = OPERATOR_AGENT_INSTANCE_SPACE

    operator: AccountId
    agent_instance: AccountId
    service_id: int
    agent_id: int

    def derive_address(self, book: AddressBook) -> DerivedAddress:
        return book.operator_agent_instance(self.agent_instance, self.operator)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operator": self.operator.hex(),
            "agent_instance": self.agent_instance.hex(),
            "service_id": self.service_id,
            "agent_id": self.agent_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OperatorAgentInstanceRecord":
        return cls(
            operator=AccountId.from_hex(data["operator"]),
            agent_instance=AccountId.from_hex(data["agent_instance"]),
            service_id=int(data["service_id"]),
            agent_id=int(data["agent_id"]),
        )


@dataclass
class OperatorInstancesIndexRecord:
    """Instance-operator record ids owned by one operator in one service."""

    TAG: ClassVar[str] = "OperatorAgentInstanceIndex"
    SCHEMA_VERSION: ClassVar[int] = 1
    SPACE: ClassVar[int] = INSTANCES_INDEX_SPACE

    service_id: int
    operator: AccountId
    operator_agent_instances: List[AccountId] = field(default_factory=list)

    def derive_address(self, book: AddressBook) -> DerivedAddress:
        return book.operator_instances_index(self.service_id, self.operator)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "operator": self.operator.hex(),
            "operator_agent_instances": _ids(self.operator_agent_instances),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OperatorInstancesIndexRecord":
        return cls(
            service_id=int(data["service_id"]),
            operator=AccountId.from_hex(data["operator"]),
            operator_agent_instances=_from_ids(data.get("operator_agent_instances", [])),
        )


@dataclass
class OperatorBondRecord:
    TAG: ClassVar[str] = "OperatorBondAccount"
    SCHEMA_VERSION: ClassVar[int] = 1
    SPACE: ClassVar[int] = OPERATOR_BOND_SPACE

    service_id: int
    operator: AccountId
    bond: int = 0

    def derive_address(self, book: AddressBook) -> DerivedAddress:
        return book.operator_bond(self.service_id, self.operator)

    def to_dict(self) -> Dict[str, Any]:
        return {"service_id": self.service_id, "operator": self.operator.hex(), "bond": self.bond}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OperatorBondRecord":
        return cls(
            service_id=int(data["service_id"]),
            operator=AccountId.from_hex(data["operator"]),
            bond=int(data["bond"]),
        )


@dataclass
class InstanceClaimRecord:
    """
    Registry-wide marker keyed by an agent instance.

    Exists while some operator holds the instance in some service. An
    operator whose own id carries a marker is an instance and may not act
    as an operator.
    """

    TAG: ClassVar[str] = "InstanceClaimAccount"
    SCHEMA_VERSION: ClassVar[int] = 1
    SPACE: ClassVar[int] = INSTANCE_CLAIM_SPACE

    agent_instance: AccountId
    operator: AccountId
    service_id: int
    agent_id: int

    def derive_address(self, book: AddressBook) -> DerivedAddress:
        return book.instance_claim(self.agent_instance)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_instance": self.agent_instance.hex(),
            "operator": self.operator.hex(),
            "service_id": self.service_id,
            "agent_id": self.agent_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InstanceClaimRecord":
        return cls(
            agent_instance=AccountId.from_hex(data["agent_instance"]),
            operator=AccountId.from_hex(data["operator"]),
            service_id=int(data["service_id"]),
            agent_id=int(data["agent_id"]),
        )
