"""
Agent Service Registry core.

Public surface:
    ServiceRegistry         - registry operations and read API
    RegistryConfig          - layered configuration
    ThresholdMultisig       - default multisig implementation
    AccountId / Keypair     - identities
    RegistryError + kinds   - error taxonomy
"""

from .addresses import AddressBook, AddressKind, DerivedAddress
from .config import RegistryConfig, get_config, reset_config, set_config
from .errors import (
    AccessControlError,
    ArithmeticViolation,
    ConfigurationError,
    DerivationMismatchError,
    ErrorCode,
    ErrorKind,
    ExistenceError,
    FundsError,
    ReentrancyError,
    RegistryError,
    StateViolationError,
    ValidationError,
)
from .events import EventLog, RegistryEvent
from .keys import AccountId, Keypair, create_address, derive
from .multisig import MultisigImplementation, ThresholdMultisig
from .program import ServiceRegistry
from .state import AgentParams, AgentRole, ServiceRecord, ServiceState
from .storage import Ledger, RentSchedule

__all__ = [
    # Registry
    "ServiceRegistry",
    "ServiceRecord",
    "ServiceState",
    "AgentParams",
    "AgentRole",
    # Config
    "RegistryConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Identity and addresses
    "AccountId",
    "Keypair",
    "create_address",
    "derive",
    "AddressBook",
    "AddressKind",
    "DerivedAddress",
    # Storage
    "Ledger",
    "RentSchedule",
    # Multisig
    "MultisigImplementation",
    "ThresholdMultisig",
    # Events
    "EventLog",
    "RegistryEvent",
    # Errors
    "RegistryError",
    "ErrorCode",
    "ErrorKind",
    "AccessControlError",
    "StateViolationError",
    "ValidationError",
    "ArithmeticViolation",
    "FundsError",
    "DerivationMismatchError",
    "ExistenceError",
    "ReentrancyError",
    "ConfigurationError",
]
