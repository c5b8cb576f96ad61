"""
Multisig collaborator interface, default threshold implementation, and
whitelist maintenance.

The registry never executes multisig logic itself. At deployment it hands
(instances, threshold, payload) to a whitelisted implementation, which
allocates its own account and returns the address. During slashing the
registry asks the owning implementation whether the caller speaks for that
account.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Protocol, Sequence

from .addresses import AddressBook, AddressKind, DerivedAddress
from .constants import MULTISIG_BASE_SPACE
from .errors import ErrorCode, require
from .keys import AccountId
from .state import MultisigWhitelistRecord
from .storage import AccountStore, RecordStore

logger = logging.getLogger(__name__)


class MultisigImplementation(Protocol):
    implementation_id: AccountId

    def create(
        self,
        accounts: AccountStore,
        agent_instances: Sequence[AccountId],
        threshold: int,
        data: bytes,
        payer: AccountId,
    ) -> AccountId: ...

    def is_authorized_caller(
        self, accounts: AccountStore, multisig: AccountId, caller: AccountId
    ) -> bool: ...


@dataclass
class MultisigAccount:
    """State of one threshold multisig."""

    TAG: ClassVar[str] = "MultisigAccount"
    SCHEMA_VERSION: ClassVar[int] = 1
    SPACE: ClassVar[int] = MULTISIG_BASE_SPACE

    agent_instances: List[AccountId]
    threshold: int
    data: bytes = b""

    def derive_address(self, book: AddressBook) -> DerivedAddress:
        return book.multisig(self.agent_instances)

    def space(self) -> int:
        return MULTISIG_BASE_SPACE + 70 * len(self.agent_instances) + 2 * len(self.data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_instances": [i.hex() for i in self.agent_instances],
            "threshold": self.threshold,
            "data": self.data.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MultisigAccount":
        return cls(
            agent_instances=[AccountId.from_hex(i) for i in data["agent_instances"]],
            threshold=int(data["threshold"]),
            data=bytes.fromhex(data.get("data", "")),
        )


class ThresholdMultisig:
    """
    Default multisig implementation.

    Accounts live at [b"multisig", sha256(instances)] under the
    implementation's own id, so the same instance set cannot be deployed
    twice through one implementation.
    """

    def __init__(self, implementation_id: AccountId):
        self.implementation_id = implementation_id
        self.book = AddressBook(implementation_id)

    def create(
        self,
        accounts: AccountStore,
        agent_instances: Sequence[AccountId],
        threshold: int,
        data: bytes,
        payer: AccountId,
    ) -> AccountId:
        require(
            0 < threshold <= len(agent_instances),
            ErrorCode.INVALID_ARGUMENT,
            "Multisig threshold must be within instance count",
            threshold=threshold,
            instances=len(agent_instances),
        )
        account = MultisigAccount(
            agent_instances=list(agent_instances), threshold=threshold, data=bytes(data)
        )
        handle = self.book.multisig(account.agent_instances)
        RecordStore(accounts, self.book).create(handle, account, payer, space=account.space())
        logger.info(
            "multisig created at %s (%d-of-%d)",
            handle.address.hex()[:16],
            threshold,
            len(agent_instances),
        )
        return handle.address

    def load(self, accounts: AccountStore, multisig: AccountId) -> MultisigAccount:
        records = RecordStore(accounts, self.book)
        handle = DerivedAddress(address=multisig, bump=0, kind=AddressKind.MULTISIG)
        return records.load(MultisigAccount, handle)

    def is_authorized_caller(
        self, accounts: AccountStore, multisig: AccountId, caller: AccountId
    ) -> bool:
        if caller != multisig or not accounts.exists(multisig):
            return False
        return accounts.owner_of(multisig) == self.implementation_id


def update_whitelist(
    whitelist: MultisigWhitelistRecord,
    multisig: AccountId,
    allow: bool,
    max_multisigs: int,
) -> bool:
    """
    Add or remove `multisig`. Returns True if the whitelist changed.

    Adding an already present id is a no-op even when the list is full.
    """
    if allow:
        if multisig in whitelist.multisigs:
            return False
        require(
            len(whitelist.multisigs) < max_multisigs,
            ErrorCode.MAX_MULTISIGS_REACHED,
            max_multisigs=max_multisigs,
        )
        whitelist.multisigs.append(multisig)
        return True
    if multisig in whitelist.multisigs:
        whitelist.multisigs.remove(multisig)
        return True
    return False
