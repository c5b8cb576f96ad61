"""
Typed derivation helpers, one per record kind.

Every sub-record of the registry lives at an address derived from its
logical key. Callers never assemble seeds themselves: they ask the
AddressBook for a DerivedAddress handle and the handle is the only way an
address enters the storage layer.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from .constants import U32_MAX, U128_MAX
from .errors import ErrorCode, require
from .keys import AccountId, derive


class AddressKind(Enum):
    REGISTRY = "registry"
    WALLET = "registry_wallet"
    MULTISIG_WHITELIST = "registry_multisig"
    SERVICE = "service"
    AGENT_PARAM = "agent_param"
    AGENT_IDS_INDEX = "service_agent_ids_index"
    AGENT_SLOT = "service_agent_slot"
    SERVICE_INSTANCES_INDEX = "agent_instances_index"
    AGENT_INSTANCE = "service_agent_instance_account"
    OPERATOR_AGENT_INSTANCE = "operator_agent_instance"
    OPERATOR_INSTANCES_INDEX = "operator_agent_instance_index"
    OPERATOR_BOND = "operator_bond"
    INSTANCE_CLAIM = "instance_claim"
    MULTISIG = "multisig"

    @property
    def tag(self) -> bytes:
        return self.value.encode("ascii")


@dataclass(frozen=True)
class DerivedAddress:
    """Address plus the bump that produced it."""

    address: AccountId
    bump: int
    kind: AddressKind


def service_id_bytes(service_id: int) -> bytes:
    require(0 <= service_id <= U128_MAX, ErrorCode.INVALID_ARGUMENT, field="service_id", value=service_id)
    return int(service_id).to_bytes(16, "little")


def agent_id_bytes(agent_id: int) -> bytes:
    require(0 <= agent_id <= U32_MAX, ErrorCode.INVALID_ARGUMENT, field="agent_id", value=agent_id)
    return int(agent_id).to_bytes(4, "little")


def instances_digest(agent_instances: Sequence[AccountId]) -> bytes:
    """SHA-256 over the concatenated instance ids, in the given order."""
    hasher = hashlib.sha256()
    for instance in agent_instances:
        hasher.update(instance.value)
    return hasher.digest()


class AddressBook:
    """Derives the address of every record kind for one program."""

    def __init__(self, program_id: AccountId):
        self.program_id = program_id

    def _derive(self, kind: AddressKind, *parts: bytes) -> DerivedAddress:
        address, bump = derive([kind.tag, *parts], self.program_id)
        return DerivedAddress(address=address, bump=bump, kind=kind)

    # -- registry level ------------------------------------------------------

    def registry(self) -> DerivedAddress:
        return self._derive(AddressKind.REGISTRY)

    def wallet(self, registry: AccountId) -> DerivedAddress:
        return self._derive(AddressKind.WALLET, registry.value)

    def multisig_whitelist(self, registry: AccountId) -> DerivedAddress:
        return self._derive(AddressKind.MULTISIG_WHITELIST, registry.value)

    # -- service level -------------------------------------------------------

    def service(self, service_id: int) -> DerivedAddress:
        return self._derive(AddressKind.SERVICE, service_id_bytes(service_id))

    def agent_param(self, service_id: int, agent_id: int) -> DerivedAddress:
        return self._derive(
            AddressKind.AGENT_PARAM, service_id_bytes(service_id), agent_id_bytes(agent_id)
        )

    def agent_ids_index(self, service_id: int) -> DerivedAddress:
        return self._derive(AddressKind.AGENT_IDS_INDEX, service_id_bytes(service_id))

    def agent_slot(self, service_id: int, agent_id: int) -> DerivedAddress:
        return self._derive(
            AddressKind.AGENT_SLOT, service_id_bytes(service_id), agent_id_bytes(agent_id)
        )

    def service_instances_index(self, service_id: int) -> DerivedAddress:
        return self._derive(AddressKind.SERVICE_INSTANCES_INDEX, service_id_bytes(service_id))

    def agent_instance(
        self, service_id: int, agent_id: int, agent_instance: AccountId
    ) -> DerivedAddress:
        return self._derive(
            AddressKind.AGENT_INSTANCE,
            service_id_bytes(service_id),
            agent_id_bytes(agent_id),
            agent_instance.value,
        )

    # -- operator level ------------------------------------------------------

    def operator_agent_instance(
        self, agent_instance: AccountId, operator: AccountId
    ) -> DerivedAddress:
        return self._derive(
            AddressKind.OPERATOR_AGENT_INSTANCE, agent_instance.value, operator.value
        )

    def operator_instances_index(self, service_id: int, operator: AccountId) -> DerivedAddress:
        return self._derive(
            AddressKind.OPERATOR_INSTANCES_INDEX, service_id_bytes(service_id), operator.value
        )

    def operator_bond(self, service_id: int, operator: AccountId) -> DerivedAddress:
        return self._derive(
            AddressKind.OPERATOR_BOND, service_id_bytes(service_id), operator.value
        )

    def instance_claim(self, agent_instance: AccountId) -> DerivedAddress:
        return self._derive(AddressKind.INSTANCE_CLAIM, agent_instance.value)

    def multisig(self, agent_instances: Sequence[AccountId]) -> DerivedAddress:
        return self._derive(AddressKind.MULTISIG, instances_digest(agent_instances))

    # -- verification --------------------------------------------------------

    @staticmethod
    def verify(expected: DerivedAddress, supplied: AccountId) -> DerivedAddress:
        """Raise InvalidDerivedId unless `supplied` equals the recomputed address."""
        require(
            expected.address == supplied,
            ErrorCode.INVALID_DERIVED_ID,
            kind=expected.kind.value,
            expected=expected.address.hex(),
            supplied=supplied.hex(),
        )
        return expected
