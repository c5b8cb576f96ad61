"""
Storage substrate: native-value ledger, rent-bearing account store, and the
tagged record codec.

Layers (bottom up):
    Ledger        balances per AccountId, checked u64 arithmetic
    AccountStore  allocated records; each holds its minimum balance in the ledger
    codec         8-byte discriminator + versioned JSON body
    RecordStore   typed records at derived addresses, re-verified on load
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Type, TypeVar

from .addresses import AddressBook, DerivedAddress
from .constants import DISCRIMINATOR_SIZE, U64_MAX
from .errors import ErrorCode, fail, require
from .keys import AccountId

logger = logging.getLogger(__name__)


def checked_add(a: int, b: int, limit: int = U64_MAX) -> int:
    result = a + b
    require(result <= limit, ErrorCode.OVERFLOW, lhs=a, rhs=b)
    return result

def checked_sub(a: int, b: int) -> int:
    require(b <= a, ErrorCode.OVERFLOW, lhs=a, rhs=b)
    return a - b

# =============================================================================
# Ledger
# =============================================================================

class Ledger:
    """Native-value balances keyed by AccountId."""

    def __init__(self) -> None:
        self._balances: Dict[AccountId, int] = {}

    def balance_of(self, account: AccountId) -> int:
        return self._balances.get(account, 0)

    def airdrop(self, account: AccountId, amount: int) -> None:
        """Mint `amount` into `account` (bootstrap and test funding)."""
        require(amount >= 0, ErrorCode.INVALID_ARGUMENT, amount=amount)
        self._balances[account] = checked_add(self.balance_of(account), amount)

    def transfer(self, source: AccountId, destination: AccountId, amount: int) -> None:
        require(amount >= 0, ErrorCode.INVALID_ARGUMENT, amount=amount)
        if amount == 0 or source == destination:
            return
        available = self.balance_of(source)
        require(
            available >= amount,
            ErrorCode.INSUFFICIENT_FUNDS,
            account=source.hex(),
            available=available,
            requested=amount,
        )
        credited = checked_add(self.balance_of(destination), amount)
        self._balances[source] = available - amount
        self._balances[destination] = credited

    def snapshot(self) -> Dict[AccountId, int]:
        return dict(self._balances)

    def restore(self, snapshot: Dict[AccountId, int]) -> None:
        self._balances = dict(snapshot)

# =============================================================================
# Rent
# =============================================================================

@dataclass(frozen=True)
class RentSchedule:
    """Minimum balance a record must hold to persist."""

    lamports_per_byte_year: int = 3480
    exemption_threshold_years: int = 2
    storage_overhead: int = 128

    def minimum_balance(self, space: int) -> int:
        return (self.storage_overhead + space) * self.lamports_per_byte_year * self.exemption_threshold_years

# =============================================================================
# Account store
# =============================================================================

@dataclass
class Account:
    owner: AccountId
    space: int
    data: bytes = b""

class AccountStore:
    """
    Allocated records keyed by AccountId.

    An account's minimum balance lives in the ledger under the account's own
    id; `close` hands it back to the refund target.
    """

    def __init__(self, ledger: Ledger, rent: Optional[RentSchedule] = None):
        self.ledger = ledger
        self.rent = rent or RentSchedule()
        self._accounts: Dict[AccountId, Account] = {}

    def exists(self, account_id: AccountId) -> bool:
        return account_id in self._accounts

    def create(self, account_id: AccountId, space: int, owner: AccountId, payer: AccountId) -> None:
        require(
            not self.exists(account_id),
            ErrorCode.ACCOUNT_ALREADY_EXISTS,
            account=account_id.hex(),
        )
        require(space >= 0, ErrorCode.INVALID_ARGUMENT, space=space)
        self.ledger.transfer(payer, account_id, self.rent.minimum_balance(space))
        self._accounts[account_id] = Account(owner=owner, space=space, data=bytes(space))

    def _get(self, account_id: AccountId, owner: AccountId) -> Account:
        account = self._accounts.get(account_id)
        if account is None:
            fail(ErrorCode.ACCOUNT_NOT_FOUND, account=account_id.hex())
        require(account.owner == owner, ErrorCode.INVALID_ACCOUNT_OWNER, account=account_id.hex())
        return account

    def owner_of(self, account_id: AccountId) -> AccountId:
        account = self._accounts.get(account_id)
        if account is None:
            fail(ErrorCode.ACCOUNT_NOT_FOUND, account=account_id.hex())
        return account.owner

    def read(self, account_id: AccountId, owner: AccountId) -> bytes:
        return self._get(account_id, owner).data

    def write(self, account_id: AccountId, data: bytes, owner: AccountId) -> None:
        account = self._get(account_id, owner)
        require(
            len(data) <= account.space,
            ErrorCode.NOT_ENOUGH_SPACE,
            account=account_id.hex(),
            size=len(data),
            space=account.space,
        )
        account.data = bytes(data)

    def close(self, account_id: AccountId, refund_to: AccountId) -> int:
        """Zero the record and return its whole balance to `refund_to`."""
        account = self._accounts.pop(account_id, None)
        if account is None:
            fail(ErrorCode.ACCOUNT_NOT_FOUND, account=account_id.hex())
        account.data = bytes(account.space)
        refunded = self.ledger.balance_of(account_id)
        self.ledger.transfer(account_id, refund_to, refunded)
        return refunded

    def snapshot(self) -> Dict[AccountId, Account]:
        return copy.deepcopy(self._accounts)

    def restore(self, snapshot: Dict[AccountId, Account]) -> None:
        self._accounts = copy.deepcopy(snapshot)

# =============================================================================
# Record codec
# =============================================================================

class Record(Protocol):
    TAG: str
    SCHEMA_VERSION: int
    SPACE: int

    def to_dict(self) -> Dict[str, Any]: ...

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Any: ...

    def derive_address(self, book: AddressBook) -> DerivedAddress: ...

R = TypeVar("R")

def discriminator(tag: str) -> bytes:
    return hashlib.sha256(f"account:{tag}".encode("utf-8")).digest()[:DISCRIMINATOR_SIZE]

def encode_record(record: Record) -> bytes:
    body = json.dumps(
        {"v": record.SCHEMA_VERSION, "data": record.to_dict()},
        sort_keys=True,
        separators=(",", ":"),
    )
    return discriminator(record.TAG) + body.encode("utf-8")

def decode_record(cls: Type[R], raw: bytes) -> R:
    tag = cls.TAG  # type: ignore[attr-defined]
    require(
        raw[:DISCRIMINATOR_SIZE] == discriminator(tag),
        ErrorCode.INVALID_RECORD,
        "Record discriminator does not match",
        tag=tag,
    )
    try:
        payload = json.loads(raw[DISCRIMINATOR_SIZE:].decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        fail(ErrorCode.INVALID_RECORD, "Record body is not valid JSON", tag=tag, error=str(exc))
    require(
        payload.get("v") == cls.SCHEMA_VERSION,  # type: ignore[attr-defined]
        ErrorCode.INVALID_RECORD,
        "Unsupported record schema version",
        tag=tag,
        version=payload.get("v"),
    )
    return cls.from_dict(payload["data"])  # type: ignore[attr-defined]

# =============================================================================
# Record store
# =============================================================================

class RecordStore:
    """Typed records at derived addresses, owned by one program."""

    def __init__(self, accounts: AccountStore, book: AddressBook):
        self.accounts = accounts
        self.book = book

    @property
    def program_id(self) -> AccountId:
        return self.book.program_id

    def exists(self, handle: DerivedAddress) -> bool:
        return self.accounts.exists(handle.address)

    def create(
        self,
        handle: DerivedAddress,
        record: Record,
        payer: AccountId,
        space: Optional[int] = None,
    ) -> None:
        AddressBook.verify(record.derive_address(self.book), handle.address)
        self.accounts.create(
            handle.address, record.SPACE if space is None else space, self.program_id, payer
        )
        self.accounts.write(handle.address, encode_record(record), self.program_id)
        logger.debug("created %s at %s", record.TAG, handle.address.hex()[:16])

    def save(self, handle: DerivedAddress, record: Record) -> None:
        AddressBook.verify(record.derive_address(self.book), handle.address)
        self.accounts.write(handle.address, encode_record(record), self.program_id)

    def load(self, cls: Type[R], handle: DerivedAddress) -> R:
        """Decode the record and check it lives where its own key says it should."""
        record = decode_record(cls, self.accounts.read(handle.address, self.program_id))
        AddressBook.verify(record.derive_address(self.book), handle.address)  # type: ignore[attr-defined]
        return record

    def load_optional(self, cls: Type[R], handle: DerivedAddress) -> Optional[R]:
        if not self.exists(handle):
            return None
        return self.load(cls, handle)

    def close(self, handle: DerivedAddress, refund_to: AccountId) -> int:
        return self.accounts.close(handle.address, refund_to)
