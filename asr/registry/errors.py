"""
Registry Errors - Error taxonomy for all registry operations.

Error hierarchy:
    RegistryError (base)
    ├── AccessControlError       caller is not owner / manager / drainer / multisig
    ├── StateViolationError      operation invalid for the lifecycle state
    ├── ValidationError          malformed or out-of-bounds arguments
    ├── ArithmeticViolation      counter or balance overflow / underflow
    ├── FundsError               insufficient or mismatched value transfer
    ├── DerivationMismatchError  stored id disagrees with the re-derived id
    ├── ExistenceError           record missing / unexpectedly present
    ├── ReentrancyError          registry lock already held
    └── ConfigurationError       multisig not whitelisted, whitelist full

Every error carries an ErrorCode. All errors are fail-fast: the enclosing
operation is rolled back before the error reaches the caller.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, NoReturn, Optional, Type

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    """Coarse error classification."""
    ACCESS_CONTROL = "access_control"
    STATE_VIOLATION = "state_violation"
    VALIDATION = "validation"
    ARITHMETIC = "arithmetic"
    FUNDS = "funds"
    DERIVATION_MISMATCH = "derivation_mismatch"
    EXISTENCE = "existence"
    REENTRANCY = "reentrancy"
    CONFIGURATION = "configuration"


class ErrorCode(Enum):
    """Fine-grained error reasons, each bound to exactly one ErrorKind."""

    # Access control
    NOT_OWNER = ("NotOwner", ErrorKind.ACCESS_CONTROL, "Caller is not the registry owner")
    NOT_MANAGER = ("NotManager", ErrorKind.ACCESS_CONTROL, "Caller is not the registry manager")
    NOT_DRAINER = ("NotDrainer", ErrorKind.ACCESS_CONTROL, "Caller is not the registry drainer")
    ONLY_OWN_SERVICE_MULTISIG = (
        "OnlyOwnServiceMultisig", ErrorKind.ACCESS_CONTROL, "Only own service multisig",
    )
    INVALID_ACCOUNT_OWNER = (
        "InvalidAccountOwner", ErrorKind.ACCESS_CONTROL, "Invalid account owner",
    )

    # Lifecycle state
    WRONG_SERVICE_STATE = ("WrongServiceState", ErrorKind.STATE_VIOLATION, "Wrong service state")
    SERVICE_MUST_BE_INACTIVE = (
        "ServiceMustBeInactive", ErrorKind.STATE_VIOLATION, "Service must be inactive",
    )

    # Validation
    ZERO_CONFIG_HASH = ("ZeroConfigHash", ErrorKind.VALIDATION, "Config hash cannot be zero")
    ZERO_VALUE = ("ZeroValue", ErrorKind.VALIDATION, "Slots or bond cannot be zero")
    WRONG_ARRAY_LENGTH = (
        "WrongArrayLength", ErrorKind.VALIDATION, "Agent ID list is empty or lengths do not match",
    )
    WRONG_AGENT_ID = (
        "WrongAgentId", ErrorKind.VALIDATION,
        "Agent IDs must be strictly increasing and without duplicates",
    )
    WRONG_THRESHOLD = ("WrongThreshold", ErrorKind.VALIDATION, "Threshold is below allowed bounds")
    WRONG_THRESHOLD_ABOVE = (
        "WrongThresholdAbove", ErrorKind.VALIDATION, "Threshold is above allowed bounds",
    )
    INVALID_ARGUMENT = ("InvalidArgument", ErrorKind.VALIDATION, "Invalid argument")
    WRONG_SERVICE_OWNER = (
        "WrongServiceOwner", ErrorKind.VALIDATION, "Service owner does not match",
    )
    AGENT_NOT_IN_SERVICE = (
        "AgentNotInService", ErrorKind.VALIDATION, "Agent is not registered in service",
    )
    NO_AGENT_IDS = ("NoAgentIds", ErrorKind.VALIDATION, "Service has no agent ids")
    WRONG_OPERATOR = ("WrongOperator", ErrorKind.VALIDATION, "Wrong operator")
    AGENT_INSTANCES_SLOTS_FILLED = (
        "AgentInstancesSlotsFilled", ErrorKind.VALIDATION, "Agent instances slots filled",
    )
    INCORRECT_AGENT_INSTANCES = (
        "IncorrectAgentInstances", ErrorKind.VALIDATION, "Incorrect agent instances",
    )
    MAX_AGENT_ID_PER_SERVICE_REACHED = (
        "MaxAgentIdPerServiceReached", ErrorKind.VALIDATION, "Max agent id per service reached",
    )
    MAX_AGENT_INSTANCES_PER_SERVICE_REACHED = (
        "MaxAgentInstancesPerServiceReached", ErrorKind.VALIDATION,
        "Max agent instances per service reached",
    )
    INVALID_SLASH_AMOUNT = ("InvalidSlashAmount", ErrorKind.VALIDATION, "Invalid slash amount")
    NOT_ENOUGH_SPACE = ("NotEnoughSpace", ErrorKind.VALIDATION, "Record space is not enough")
    INVALID_SEEDS = ("InvalidSeeds", ErrorKind.VALIDATION, "Invalid derivation seeds")
    INVALID_RECORD = ("InvalidRecord", ErrorKind.VALIDATION, "Record data is invalid")

    # Arithmetic
    OVERFLOW = ("Overflow", ErrorKind.ARITHMETIC, "Overflow")

    # Funds
    INSUFFICIENT_FUNDS = ("InsufficientFunds", ErrorKind.FUNDS, "Insufficient funds")
    INCORRECT_REGISTRATION_DEPOSIT_VALUE = (
        "IncorrectRegistrationDepositValue", ErrorKind.FUNDS,
        "Incorrect registration deposit value",
    )
    INCORRECT_AGENT_BONDING_VALUE = (
        "IncorrectAgentBondingValue", ErrorKind.FUNDS, "Incorrect agent bonding value",
    )

    # Derivation
    INVALID_DERIVED_ID = ("InvalidDerivedId", ErrorKind.DERIVATION_MISMATCH, "Invalid derived id")

    # Existence
    SERVICE_NOT_FOUND = ("ServiceNotFound", ErrorKind.EXISTENCE, "Service not found")
    REGISTRY_NOT_INITIALIZED = (
        "RegistryNotInitialized", ErrorKind.EXISTENCE, "Registry is not initialized",
    )
    ACCOUNT_ALREADY_EXISTS = ("AccountAlreadyExists", ErrorKind.EXISTENCE, "Account already exists")
    ACCOUNT_NOT_FOUND = ("AccountNotFound", ErrorKind.EXISTENCE, "Account does not exist")
    ACCOUNT_SERVICE_AGENT_ID_INSTANCE_EXISTS = (
        "AccountServiceAgentIdInstanceExists", ErrorKind.EXISTENCE,
        "Account of service and agent_id instance already exists",
    )
    ACCOUNT_AGENT_ID_INSTANCE_OPERATOR_EXISTS = (
        "AccountAgentIdInstanceOperatorExists", ErrorKind.EXISTENCE,
        "Account of agent_id instance and operator already exists",
    )
    OPERATOR_HAS_NO_INSTANCES = (
        "OperatorHasNoInstances", ErrorKind.EXISTENCE, "Operator has no instances",
    )

    # Reentrancy
    REENTRANCY_GUARD = ("ReentrancyGuard", ErrorKind.REENTRANCY, "Reentrancy guard")

    # Configuration
    UNAUTHORIZED_MULTISIG = (
        "UnauthorizedMultisig", ErrorKind.CONFIGURATION, "Unauthorized multisig",
    )
    MAX_MULTISIGS_REACHED = (
        "MaxMultiSigsReached", ErrorKind.CONFIGURATION, "Max multisig in registry reached",
    )

    def __init__(self, code_name: str, kind: ErrorKind, default_message: str):
        self.code_name = code_name
        self.kind = kind
        self.default_message = default_message

    def __str__(self) -> str:
        return self.code_name


class RegistryError(Exception):
    """Base error for all registry failures.

    The message is safe to surface to callers; `details` holds structured
    context for logs and tests.
    """

    kind: Optional[ErrorKind] = None

    def __init__(
        self,
        code: ErrorCode,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message or code.default_message
        self.details = details or {}
        super().__init__(f"[{code.code_name}] {self.message}")


class AccessControlError(RegistryError):
    kind = ErrorKind.ACCESS_CONTROL


class StateViolationError(RegistryError):
    kind = ErrorKind.STATE_VIOLATION


class ValidationError(RegistryError):
    kind = ErrorKind.VALIDATION


class ArithmeticViolation(RegistryError):
    kind = ErrorKind.ARITHMETIC


class FundsError(RegistryError):
    kind = ErrorKind.FUNDS


class DerivationMismatchError(RegistryError):
    kind = ErrorKind.DERIVATION_MISMATCH


class ExistenceError(RegistryError):
    kind = ErrorKind.EXISTENCE


class ReentrancyError(RegistryError):
    kind = ErrorKind.REENTRANCY


class ConfigurationError(RegistryError):
    kind = ErrorKind.CONFIGURATION


_ERROR_CLASSES: Dict[ErrorKind, Type[RegistryError]] = {
    ErrorKind.ACCESS_CONTROL: AccessControlError,
    ErrorKind.STATE_VIOLATION: StateViolationError,
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.ARITHMETIC: ArithmeticViolation,
    ErrorKind.FUNDS: FundsError,
    ErrorKind.DERIVATION_MISMATCH: DerivationMismatchError,
    ErrorKind.EXISTENCE: ExistenceError,
    ErrorKind.REENTRANCY: ReentrancyError,
    ErrorKind.CONFIGURATION: ConfigurationError,
}


def registry_error(code: ErrorCode, message: Optional[str] = None, **details: Any) -> RegistryError:
    """Build the error subclass matching the code's kind."""
    cls = _ERROR_CLASSES[code.kind]
    if details:
        logger.debug("registry error %s: %s", code.code_name, details)
    return cls(code, message, details)


def fail(code: ErrorCode, message: Optional[str] = None, **details: Any) -> NoReturn:
    raise registry_error(code, message, **details)


def require(condition: bool, code: ErrorCode, message: Optional[str] = None, **details: Any) -> None:
    """Raise the error for `code` unless `condition` holds."""
    if not condition:
        raise registry_error(code, message, **details)
