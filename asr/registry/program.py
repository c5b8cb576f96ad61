"""
Agent Service Registry - service lifecycle, bonding and slashing.

Provides:
1. Registry administration (roles, base URI, multisig whitelist)
2. Service lifecycle: create / update / roles / activate / register / deploy
3. Bond flows: security deposit, operator bonds, slashing, drain
4. Termination and unbonding with exactly-once refunds

Execution model:
- Every public mutating operation is one transaction: ledger, records and
  pending events are snapshotted on entry and restored on any exception.
- create, deploy, drain, terminate and unbond additionally hold the
  registry lock; re-entering any of them while it is held fails with
  ReentrancyError.

Wired to the service lifecycle kernel: service_lifecycle_fsm_ref.
The kernel decides every state transition; the registry refuses to persist
a service state the kernel rejected.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence

from .addresses import AddressBook, AddressKind, DerivedAddress
from .config import RegistryConfig, get_config
from .constants import (
    MAX_NAME_LENGTH,
    MAX_SYMBOL_LENGTH,
    MAX_URI_LENGTH,
    U32_MAX,
    U128_MAX,
    agent_ids_index_space,
    instances_index_space,
    multisig_whitelist_space,
)
from .errors import ErrorCode, fail, require
from .events import (
    AgentIdsRegistered,
    BaseUriChanged,
    BondDeposited,
    Drained,
    DrainerUpdated,
    EventLog,
    InstanceRegistered,
    ManagerUpdated,
    MultisigPermissionChanged,
    OperatorSlashed,
    OperatorUnbonded,
    OwnerUpdated,
    Refunded,
    RegistrationActivated,
    ServiceCreated,
    ServiceDeployed,
    ServiceTerminated,
    ServiceUpdated,
)
from .kernels import service_lifecycle_fsm_ref as lifecycle
from .keys import AccountId
from .multisig import MultisigImplementation, update_whitelist
from .roles import apply_roles, check_agent_params, recompute, validate_threshold
from .state import (
    AgentIdsIndexRecord,
    AgentInstanceRecord,
    AgentParamRecord,
    AgentParams,
    AgentRole,
    InstanceClaimRecord,
    MultisigWhitelistRecord,
    OperatorAgentInstanceRecord,
    OperatorBondRecord,
    OperatorInstancesIndexRecord,
    RegistryRecord,
    ServiceInstancesIndexRecord,
    ServiceRecord,
    ServiceState,
    SlotCounterRecord,
)
from .storage import AccountStore, Ledger, RecordStore, checked_add, checked_sub

logger = logging.getLogger(__name__)

CONFIG_HASH_BYTES = 32


class ServiceRegistry:
    """
    One registry instance bound to one program id.

    All state lives in the AccountStore / Ledger; the object itself only
    holds wiring (address book, event log, installed multisig programs).
    """

    def __init__(
        self,
        program_id: AccountId,
        ledger: Optional[Ledger] = None,
        config: Optional[RegistryConfig] = None,
    ):
        self.config = config or get_config()
        self.program_id = program_id
        self.ledger = ledger if ledger is not None else Ledger()
        self.accounts = AccountStore(self.ledger, self.config.rent.schedule())
        self.book = AddressBook(program_id)
        self.records = RecordStore(self.accounts, self.book)
        self.events = EventLog()
        self._implementations: Dict[AccountId, MultisigImplementation] = {}
        self._registry_handle = self.book.registry()
        self._depth = 0

    # =========================================================================
    # Plumbing
    # =========================================================================

    @property
    def address(self) -> AccountId:
        return self._registry_handle.address

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[None]:
        """All-or-nothing scope around one public operation."""
        ledger_snapshot = self.ledger.snapshot()
        accounts_snapshot = self.accounts.snapshot()
        mark = self.events.mark()
        self._depth += 1
        try:
            yield
        except Exception as exc:
            self.ledger.restore(ledger_snapshot)
            self.accounts.restore(accounts_snapshot)
            self.events.rollback(mark)
            logger.warning(f"{operation} rolled back: {exc}")
            raise
        finally:
            self._depth -= 1
        if self._depth == 0:
            self.events.commit()

    @contextmanager
    def _locked(self) -> Iterator[RegistryRecord]:
        """Hold the registry lock for the body; yields the locked registry."""
        registry = self._load_registry()
        require(not registry.locked, ErrorCode.REENTRANCY_GUARD)
        registry.locked = True
        self._save_registry(registry)
        yield registry
        registry = self._load_registry()
        registry.locked = False
        self._save_registry(registry)

    def _load_registry(self) -> RegistryRecord:
        require(self.records.exists(self._registry_handle), ErrorCode.REGISTRY_NOT_INITIALIZED)
        return self.records.load(RegistryRecord, self._registry_handle)

    def _save_registry(self, registry: RegistryRecord) -> None:
        self.records.save(self._registry_handle, registry)

    def _load_service(self, service_id: int) -> ServiceRecord:
        handle = self.book.service(service_id)
        require(self.records.exists(handle), ErrorCode.SERVICE_NOT_FOUND, service_id=service_id)
        service = self.records.load(ServiceRecord, handle)
        require(service.service_id == service_id, ErrorCode.INVALID_DERIVED_ID)
        return service

    def _save_service(self, service: ServiceRecord) -> None:
        self.records.save(self.book.service(service.service_id), service)

    def _put(self, handle: DerivedAddress, record, payer: AccountId, space: Optional[int] = None) -> None:
        if self.records.exists(handle):
            self.records.save(handle, record)
        else:
            self.records.create(handle, record, payer, space=space)

    def _close_if_exists(self, handle: DerivedAddress, refund_to: AccountId) -> int:
        if not self.records.exists(handle):
            return 0
        return self.records.close(handle, refund_to)

    def _wallet(self, registry: RegistryRecord) -> AccountId:
        expected = self.book.wallet(self.address)
        AddressBook.verify(expected, registry.wallet_key)
        require(expected.bump == registry.wallet_bump, ErrorCode.INVALID_DERIVED_ID, kind="wallet_bump")
        return registry.wallet_key

    def _transfer_exact(
        self, source: AccountId, destination: AccountId, amount: int, code: ErrorCode
    ) -> None:
        """Transfer and verify the source was debited by exactly `amount`."""
        pre_balance = self.ledger.balance_of(source)
        require(pre_balance >= amount, code, required=amount, available=pre_balance)
        self.ledger.transfer(source, destination, amount)
        debited = pre_balance - self.ledger.balance_of(source)
        require(debited == amount, code, expected=amount, debited=debited)

    def _pay_out(self, wallet: AccountId, receiver: AccountId, amount: int) -> None:
        available = self.ledger.balance_of(wallet)
        require(available >= amount, ErrorCode.INSUFFICIENT_FUNDS, available=available, requested=amount)
        self.ledger.transfer(wallet, receiver, amount)

    def _apply_kernel(self, service: ServiceRecord, tag: str, **args) -> Dict:
        """
        Run one lifecycle command through the kernel and copy the result back.

        Fail-closed: a kernel rejection raises and nothing is persisted.
        """
        kstate = lifecycle.State(
            status=service.state.name,
            max_num_agent_instances=service.max_num_agent_instances,
            num_agent_instances=service.num_agent_instances,
        )
        result = lifecycle.step(kstate, lifecycle.Command(tag=tag, args=args))
        if not result.ok or result.state is None:
            logger.warning(f"Lifecycle kernel REJECTED {tag} for service {service.service_id}: {result.error}")
            fail(
                ErrorCode.WRONG_SERVICE_STATE,
                service_id=service.service_id,
                state=service.state.name,
                kernel_error=result.error,
            )
        service.state = ServiceState[result.state.status]
        service.max_num_agent_instances = result.state.max_num_agent_instances
        service.num_agent_instances = result.state.num_agent_instances
        return result.effects

    @staticmethod
    def _require_manager(registry: RegistryRecord, caller: AccountId) -> None:
        require(caller == registry.manager, ErrorCode.NOT_MANAGER)

    @staticmethod
    def _require_owner(registry: RegistryRecord, caller: AccountId) -> None:
        require(caller == registry.owner, ErrorCode.NOT_OWNER)

    @staticmethod
    def _require_service_owner(service: ServiceRecord, service_owner: AccountId) -> None:
        require(
            service.service_owner == service_owner,
            ErrorCode.WRONG_SERVICE_OWNER,
            service_id=service.service_id,
        )

    # =========================================================================
    # Registry administration
    # =========================================================================

    def initialize(
        self,
        caller: AccountId,
        name: str,
        symbol: str,
        base_uri: str,
        manager: AccountId,
        drainer: AccountId,
    ) -> RegistryRecord:
        """Create the registry root, its wallet and the multisig whitelist. Caller becomes owner."""
        with self._transaction("initialize"):
            require(
                not self.records.exists(self._registry_handle),
                ErrorCode.ACCOUNT_ALREADY_EXISTS,
                "Registry already initialized",
            )
            require(0 < len(name) <= MAX_NAME_LENGTH, ErrorCode.INVALID_ARGUMENT, field="name")
            require(0 < len(symbol) <= MAX_SYMBOL_LENGTH, ErrorCode.INVALID_ARGUMENT, field="symbol")
            require(0 < len(base_uri) <= MAX_URI_LENGTH, ErrorCode.INVALID_ARGUMENT, field="base_uri")
            require(not manager.is_zero(), ErrorCode.INVALID_ARGUMENT, field="manager")
            require(not drainer.is_zero(), ErrorCode.INVALID_ARGUMENT, field="drainer")

            wallet = self.book.wallet(self.address)
            registry = RegistryRecord(
                name=name,
                symbol=symbol,
                base_uri=base_uri,
                owner=caller,
                manager=manager,
                drainer=drainer,
                wallet_key=wallet.address,
                wallet_bump=wallet.bump,
                version=self.config.registry.version,
            )
            self.records.create(self._registry_handle, registry, caller)
            self.records.create(
                self.book.multisig_whitelist(self.address),
                MultisigWhitelistRecord(registry=self.address),
                caller,
                space=multisig_whitelist_space(self.config.limits.max_multisigs),
            )
            logger.info(f"Registry initialized at {self.address.hex()[:16]}")
            return registry

    def change_owner(self, caller: AccountId, new_owner: AccountId) -> None:
        with self._transaction("change_owner"):
            registry = self._load_registry()
            self._require_owner(registry, caller)
            require(not new_owner.is_zero(), ErrorCode.INVALID_ARGUMENT, field="new_owner")
            registry.owner = new_owner
            self._save_registry(registry)
            self.events.emit(OwnerUpdated(new_owner=new_owner))

    def change_manager(self, caller: AccountId, new_manager: AccountId) -> None:
        with self._transaction("change_manager"):
            registry = self._load_registry()
            self._require_owner(registry, caller)
            require(not new_manager.is_zero(), ErrorCode.INVALID_ARGUMENT, field="new_manager")
            registry.manager = new_manager
            self._save_registry(registry)
            self.events.emit(ManagerUpdated(new_manager=new_manager))

    def change_drainer(self, caller: AccountId, new_drainer: AccountId) -> None:
        with self._transaction("change_drainer"):
            registry = self._load_registry()
            self._require_owner(registry, caller)
            require(not new_drainer.is_zero(), ErrorCode.INVALID_ARGUMENT, field="new_drainer")
            registry.drainer = new_drainer
            self._save_registry(registry)
            self.events.emit(DrainerUpdated(new_drainer=new_drainer))

    def set_base_uri(self, caller: AccountId, base_uri: str) -> None:
        with self._transaction("set_base_uri"):
            registry = self._load_registry()
            self._require_owner(registry, caller)
            require(0 < len(base_uri) <= MAX_URI_LENGTH, ErrorCode.INVALID_ARGUMENT, field="base_uri")
            registry.base_uri = base_uri
            self._save_registry(registry)
            self.events.emit(BaseUriChanged(base_uri=base_uri))

    def set_multisig_permission(self, caller: AccountId, multisig: AccountId, allow: bool) -> bool:
        """Whitelist or de-list a multisig implementation. Returns True if anything changed."""
        with self._transaction("set_multisig_permission"):
            registry = self._load_registry()
            self._require_owner(registry, caller)
            require(not multisig.is_zero(), ErrorCode.INVALID_ARGUMENT, field="multisig")
            handle = self.book.multisig_whitelist(self.address)
            whitelist = self.records.load(MultisigWhitelistRecord, handle)
            changed = update_whitelist(whitelist, multisig, allow, self.config.limits.max_multisigs)
            if changed:
                self.records.save(handle, whitelist)
                self.events.emit(MultisigPermissionChanged(multisig=multisig, allowed=allow))
            return changed

    def install_multisig_implementation(self, implementation: MultisigImplementation) -> None:
        """Make a multisig program callable from deploy. Whitelisting is separate."""
        self._implementations[implementation.implementation_id] = implementation

    # =========================================================================
    # Service lifecycle
    # =========================================================================

    def create(
        self,
        caller: AccountId,
        service_owner: AccountId,
        config_hash: bytes,
        threshold: Optional[int] = None,
    ) -> int:
        """Create a service in PreRegistration and return its id."""
        with self._transaction("create"), self._locked() as registry:
            self._require_manager(registry, caller)
            require(not service_owner.is_zero(), ErrorCode.INVALID_ARGUMENT, field="service_owner")
            require(len(config_hash) == CONFIG_HASH_BYTES, ErrorCode.INVALID_ARGUMENT, field="config_hash")
            require(any(config_hash), ErrorCode.ZERO_CONFIG_HASH)
            if threshold is not None:
                require(0 <= threshold <= U32_MAX, ErrorCode.INVALID_ARGUMENT, field="threshold")

            service_id = checked_add(registry.total_supply, 1, U128_MAX)
            service = ServiceRecord(
                service_id=service_id,
                service_owner=service_owner,
                config_hash=bytes(config_hash),
                threshold=threshold or 0,
            )
            self._apply_kernel(service, "create")
            self.records.create(self.book.service(service_id), service, caller)

            registry.total_supply = service_id
            self._save_registry(registry)
            self.events.emit(ServiceCreated(service_id=service_id, config_hash=bytes(config_hash)))
            logger.info(f"Service {service_id} created")
            return service_id

    def update(
        self,
        caller: AccountId,
        service_id: int,
        service_owner: AccountId,
        config_hash: bytes,
        threshold: Optional[int] = None,
    ) -> None:
        with self._transaction("update"):
            registry = self._load_registry()
            self._require_manager(registry, caller)
            service = self._load_service(service_id)
            self._require_service_owner(service, service_owner)
            require(
                service.state == ServiceState.PRE_REGISTRATION,
                ErrorCode.WRONG_SERVICE_STATE,
                state=service.state.name,
            )
            require(len(config_hash) == CONFIG_HASH_BYTES, ErrorCode.INVALID_ARGUMENT, field="config_hash")
            require(any(config_hash), ErrorCode.ZERO_CONFIG_HASH)

            if threshold is not None:
                service.threshold = threshold
            validate_threshold(service.threshold, service.max_num_agent_instances)

            service.config_hash = bytes(config_hash)
            self._save_service(service)
            self.events.emit(ServiceUpdated(service_id=service_id, config_hash=bytes(config_hash)))

    def set_roles(
        self,
        caller: AccountId,
        service_id: int,
        service_owner: AccountId,
        agent_ids: Sequence[int],
        agent_params: Sequence[AgentParams],
        threshold: Optional[int] = None,
    ) -> ServiceRecord:
        """
        Upsert / delete role entries, then recompute capacity and deposit.

        Only allowed in PreRegistration. The threshold is re-validated against
        the recomputed capacity on every call.
        """
        check_agent_params(agent_ids, agent_params)
        with self._transaction("set_roles"):
            registry = self._load_registry()
            self._require_manager(registry, caller)
            service = self._load_service(service_id)
            self._require_service_owner(service, service_owner)
            require(
                service.state == ServiceState.PRE_REGISTRATION,
                ErrorCode.WRONG_SERVICE_STATE,
                state=service.state.name,
            )

            index_handle = self.book.agent_ids_index(service_id)
            index = self.records.load_optional(AgentIdsIndexRecord, index_handle)
            if index is None:
                index = AgentIdsIndexRecord(service_id=service_id)

            changes = apply_roles(
                index.agent_ids,
                agent_ids,
                agent_params,
                self.config.limits.max_agent_ids_per_service,
            )
            for agent_id in changes.deleted:
                self._close_if_exists(self.book.agent_param(service_id, agent_id), caller)
                self._close_if_exists(self.book.agent_slot(service_id, agent_id), caller)
            for role in changes.upserted:
                self._put(
                    self.book.agent_param(service_id, role.agent_id),
                    AgentParamRecord(service_id, role.agent_id, role.slots, role.bond),
                    caller,
                )

            index.agent_ids = changes.table
            self._put(
                index_handle,
                index,
                caller,
                space=agent_ids_index_space(self.config.limits.max_agent_ids_per_service),
            )

            max_num, deposit = recompute(index.agent_ids)
            self._apply_kernel(service, "configure", max_num_agent_instances=max_num)
            service.security_deposit = deposit
            if threshold is not None:
                service.threshold = threshold
            validate_threshold(service.threshold, service.max_num_agent_instances)

            self._save_service(service)
            self.events.emit(
                AgentIdsRegistered(
                    service_id=service_id,
                    agent_ids=tuple(agent_ids),
                    max_num_agent_instances=max_num,
                    security_deposit=deposit,
                )
            )
            return service

    def add_agent_id(
        self,
        caller: AccountId,
        service_id: int,
        service_owner: AccountId,
        agent_id: int,
        slots: int,
        bond: int,
        threshold: Optional[int] = None,
    ) -> ServiceRecord:
        return self.set_roles(
            caller, service_id, service_owner, [agent_id], [AgentParams(slots, bond)], threshold
        )

    def delete_agent_id(
        self,
        caller: AccountId,
        service_id: int,
        service_owner: AccountId,
        agent_id: int,
        threshold: Optional[int] = None,
    ) -> ServiceRecord:
        return self.set_roles(
            caller, service_id, service_owner, [agent_id], [AgentParams(0, 0)], threshold
        )

    def activate_registration(self, caller: AccountId, service_id: int, service_owner: AccountId) -> None:
        """Take the security deposit from the caller and open registration."""
        with self._transaction("activate_registration"):
            registry = self._load_registry()
            self._require_manager(registry, caller)
            require(not service_owner.is_zero(), ErrorCode.INVALID_ARGUMENT, field="service_owner")
            service = self._load_service(service_id)
            self._require_service_owner(service, service_owner)
            require(
                service.state == ServiceState.PRE_REGISTRATION,
                ErrorCode.SERVICE_MUST_BE_INACTIVE,
                state=service.state.name,
            )
            index = self.records.load_optional(AgentIdsIndexRecord, self.book.agent_ids_index(service_id))
            require(index is not None and len(index.agent_ids) > 0, ErrorCode.NO_AGENT_IDS)

            deposit = service.security_deposit
            self._transfer_exact(
                caller,
                self._wallet(registry),
                deposit,
                ErrorCode.INCORRECT_REGISTRATION_DEPOSIT_VALUE,
            )
            self._apply_kernel(service, "activate_registration")
            self._save_service(service)
            self.events.emit(RegistrationActivated(service_id=service_id, deposit=deposit))
            logger.info(f"Service {service_id} registration activated (deposit={deposit})")

    def register_agents(
        self,
        caller: AccountId,
        service_id: int,
        operator: AccountId,
        agent_instances: Sequence[AccountId],
        agent_ids: Sequence[int],
    ) -> int:
        """
        Bind instances to roles on behalf of `operator` and collect the bond.

        Returns:
            The bond charged for this call (sum of the bonds of the filled roles).
        """
        with self._transaction("register_agents"):
            registry = self._load_registry()
            self._require_manager(registry, caller)
            service = self._load_service(service_id)
            require(
                service.state == ServiceState.ACTIVE_REGISTRATION,
                ErrorCode.WRONG_SERVICE_STATE,
                state=service.state.name,
            )
            require(
                len(agent_instances) > 0 and len(agent_instances) == len(agent_ids),
                ErrorCode.WRONG_ARRAY_LENGTH,
            )
            require(not operator.is_zero(), ErrorCode.INVALID_ARGUMENT, field="operator")
            for instance in agent_instances:
                require(not instance.is_zero(), ErrorCode.INVALID_ARGUMENT, field="agent_instance")
            require(operator not in agent_instances, ErrorCode.WRONG_OPERATOR)
            # an operator id that is itself a claimed instance cannot operate
            require(
                not self.records.exists(self.book.instance_claim(operator)),
                ErrorCode.WRONG_OPERATOR,
                operator=operator.hex(),
            )

            params: List[AgentParamRecord] = []
            total_bond = 0
            for agent_id in agent_ids:
                param = self.records.load_optional(
                    AgentParamRecord, self.book.agent_param(service_id, agent_id)
                )
                require(
                    param is not None and param.slots > 0,
                    ErrorCode.AGENT_NOT_IN_SERVICE,
                    agent_id=agent_id,
                )
                params.append(param)
                total_bond = checked_add(total_bond, param.bond)

            self._transfer_exact(
                caller,
                self._wallet(registry),
                total_bond,
                ErrorCode.INCORRECT_AGENT_BONDING_VALUE,
            )

            max_instances = self.config.limits.max_agent_instances_per_service
            service_index_handle = self.book.service_instances_index(service_id)
            service_index = self.records.load_optional(ServiceInstancesIndexRecord, service_index_handle)
            if service_index is None:
                service_index = ServiceInstancesIndexRecord(service_id=service_id)
            operator_index_handle = self.book.operator_instances_index(service_id, operator)
            operator_index = self.records.load_optional(OperatorInstancesIndexRecord, operator_index_handle)
            if operator_index is None:
                operator_index = OperatorInstancesIndexRecord(service_id=service_id, operator=operator)

            for agent_instance, param in zip(agent_instances, params):
                self._register_instance(
                    service_id, operator, agent_instance, param, caller, service_index, operator_index
                )
                require(
                    len(service_index.agent_instances) <= max_instances
                    and len(operator_index.operator_agent_instances) <= max_instances,
                    ErrorCode.MAX_AGENT_INSTANCES_PER_SERVICE_REACHED,
                    max_instances=max_instances,
                )

            index_space = instances_index_space(max_instances)
            self._put(service_index_handle, service_index, caller, space=index_space)
            self._put(operator_index_handle, operator_index, caller, space=index_space)

            effects = self._apply_kernel(service, "register_instances", count=len(agent_instances))

            bond_handle = self.book.operator_bond(service_id, operator)
            bond = self.records.load_optional(OperatorBondRecord, bond_handle)
            if bond is None:
                bond = OperatorBondRecord(service_id=service_id, operator=operator)
            require(bond.operator == operator, ErrorCode.WRONG_OPERATOR)
            bond.bond = checked_add(bond.bond, total_bond)
            self._put(bond_handle, bond, caller)

            self._save_service(service)
            self.events.emit(
                BondDeposited(service_id=service_id, operator=operator, amount=total_bond, total_bond=bond.bond)
            )
            if effects.get("finished"):
                logger.info(f"Service {service_id} registration finished")
            return total_bond

    def _register_instance(
        self,
        service_id: int,
        operator: AccountId,
        agent_instance: AccountId,
        param: AgentParamRecord,
        payer: AccountId,
        service_index: ServiceInstancesIndexRecord,
        operator_index: OperatorInstancesIndexRecord,
    ) -> None:
        agent_id = param.agent_id

        slot_handle = self.book.agent_slot(service_id, agent_id)
        slot = self.records.load_optional(SlotCounterRecord, slot_handle)
        if slot is None:
            slot = SlotCounterRecord(service_id=service_id, agent_id=agent_id)
        require(
            slot.count < param.slots,
            ErrorCode.AGENT_INSTANCES_SLOTS_FILLED,
            agent_id=agent_id,
            slots=param.slots,
        )
        slot.count += 1
        self._put(slot_handle, slot, payer)

        ownership_handle = self.book.agent_instance(service_id, agent_id, agent_instance)
        require(
            not self.records.exists(ownership_handle),
            ErrorCode.ACCOUNT_SERVICE_AGENT_ID_INSTANCE_EXISTS,
            agent_instance=agent_instance.hex(),
        )
        claim_handle = self.book.instance_claim(agent_instance)
        claim = self.records.load_optional(InstanceClaimRecord, claim_handle)
        if claim is not None:
            code = (
                ErrorCode.ACCOUNT_SERVICE_AGENT_ID_INSTANCE_EXISTS
                if claim.service_id == service_id
                else ErrorCode.ACCOUNT_AGENT_ID_INSTANCE_OPERATOR_EXISTS
            )
            fail(code, agent_instance=agent_instance.hex(), service_id=claim.service_id)
        operator_instance_handle = self.book.operator_agent_instance(agent_instance, operator)
        require(
            not self.records.exists(operator_instance_handle),
            ErrorCode.ACCOUNT_AGENT_ID_INSTANCE_OPERATOR_EXISTS,
            agent_instance=agent_instance.hex(),
        )

        self.records.create(
            ownership_handle,
            AgentInstanceRecord(service_id=service_id, agent_id=agent_id, agent_instance=agent_instance),
            payer,
        )
        self.records.create(
            operator_instance_handle,
            OperatorAgentInstanceRecord(
                operator=operator, agent_instance=agent_instance, service_id=service_id, agent_id=agent_id
            ),
            payer,
        )
        self.records.create(
            claim_handle,
            InstanceClaimRecord(
                agent_instance=agent_instance, operator=operator, service_id=service_id, agent_id=agent_id
            ),
            payer,
        )
        service_index.agent_instances.append(agent_instance)
        operator_index.operator_agent_instances.append(operator_instance_handle.address)
        self.events.emit(
            InstanceRegistered(
                service_id=service_id, operator=operator, agent_instance=agent_instance, agent_id=agent_id
            )
        )

    def deploy(
        self,
        caller: AccountId,
        service_id: int,
        service_owner: AccountId,
        multisig_implementation: AccountId,
        data: bytes = b"",
    ) -> AccountId:
        """
        Hand a fully staffed service to a whitelisted multisig implementation.

        The instance list is sorted by raw bytes before it reaches the
        implementation, so deployment is independent of registration order.
        """
        with self._transaction("deploy"), self._locked() as registry:
            self._require_manager(registry, caller)
            service = self._load_service(service_id)
            self._require_service_owner(service, service_owner)
            require(
                service.state == ServiceState.FINISHED_REGISTRATION,
                ErrorCode.WRONG_SERVICE_STATE,
                state=service.state.name,
            )
            whitelist = self.records.load(MultisigWhitelistRecord, self.book.multisig_whitelist(self.address))
            require(
                multisig_implementation in whitelist.multisigs,
                ErrorCode.UNAUTHORIZED_MULTISIG,
                multisig=multisig_implementation.hex(),
            )
            implementation = self._implementations.get(multisig_implementation)
            require(
                implementation is not None,
                ErrorCode.UNAUTHORIZED_MULTISIG,
                "Multisig implementation is not installed",
                multisig=multisig_implementation.hex(),
            )

            index = self.records.load(ServiceInstancesIndexRecord, self.book.service_instances_index(service_id))
            instances = sorted(index.agent_instances)
            multisig = implementation.create(self.accounts, instances, service.threshold, bytes(data), caller)

            self._apply_kernel(service, "deploy")
            service.multisig = multisig
            self._save_service(service)
            self.events.emit(ServiceDeployed(service_id=service_id, multisig=multisig))
            logger.info(f"Service {service_id} deployed to multisig {multisig.hex()[:16]}")
            return multisig

    def terminate(self, caller: AccountId, service_id: int, service_owner: AccountId) -> int:
        """
        Terminate a service, purge its role and instance records and refund the deposit.

        Returns:
            The refunded security deposit (0 if already refunded).
        """
        with self._transaction("terminate"), self._locked() as registry:
            self._require_manager(registry, caller)
            service = self._load_service(service_id)
            self._require_service_owner(service, service_owner)
            require(
                service.state not in (
                    ServiceState.NON_EXISTENT,
                    ServiceState.PRE_REGISTRATION,
                    ServiceState.TERMINATED_BONDED,
                ),
                ErrorCode.WRONG_SERVICE_STATE,
                state=service.state.name,
            )
            wallet = self._wallet(registry)

            index_handle = self.book.agent_ids_index(service_id)
            index = self.records.load_optional(AgentIdsIndexRecord, index_handle)
            roles: List[AgentRole] = index.agent_ids if index is not None else []
            instances_handle = self.book.service_instances_index(service_id)
            instances_index = self.records.load_optional(ServiceInstancesIndexRecord, instances_handle)
            instances = instances_index.agent_instances if instances_index is not None else []

            for role in roles:
                self._close_if_exists(self.book.agent_slot(service_id, role.agent_id), caller)
                self._close_if_exists(self.book.agent_param(service_id, role.agent_id), caller)
                for agent_instance in instances:
                    self._close_if_exists(
                        self.book.agent_instance(service_id, role.agent_id, agent_instance), caller
                    )
            self._close_if_exists(instances_handle, caller)
            self._close_if_exists(index_handle, caller)

            refund = service.security_deposit
            if refund > 0:
                service.security_deposit = 0
                self._pay_out(wallet, service.service_owner, refund)
                self.events.emit(Refunded(service_id=service_id, receiver=service.service_owner, amount=refund))

            self._apply_kernel(service, "terminate")
            self._save_service(service)
            self.events.emit(ServiceTerminated(service_id=service_id, state=service.state.name))
            logger.info(f"Service {service_id} terminated -> {service.state.name}")
            return refund

    def unbond(self, caller: AccountId, service_id: int, operator: AccountId) -> int:
        """
        Release an operator from a terminated service and refund its bond.

        Returns:
            The refunded bond.
        """
        with self._transaction("unbond"), self._locked() as registry:
            self._require_manager(registry, caller)
            require(not operator.is_zero(), ErrorCode.INVALID_ARGUMENT, field="operator")
            service = self._load_service(service_id)
            require(
                service.state == ServiceState.TERMINATED_BONDED,
                ErrorCode.WRONG_SERVICE_STATE,
                state=service.state.name,
            )
            wallet = self._wallet(registry)

            operator_index_handle = self.book.operator_instances_index(service_id, operator)
            operator_index = self.records.load_optional(OperatorInstancesIndexRecord, operator_index_handle)
            require(
                operator_index is not None and len(operator_index.operator_agent_instances) > 0,
                ErrorCode.OPERATOR_HAS_NO_INSTANCES,
                operator=operator.hex(),
            )
            num_instances = len(operator_index.operator_agent_instances)

            bond_handle = self.book.operator_bond(service_id, operator)
            bond = self.records.load(OperatorBondRecord, bond_handle)
            refund = bond.bond
            if refund > 0:
                bond.bond = 0
                self._pay_out(wallet, operator, refund)
            self.records.close(bond_handle, caller)

            for record_id in operator_index.operator_agent_instances:
                record = self.records.load(
                    OperatorAgentInstanceRecord,
                    DerivedAddress(record_id, 0, AddressKind.OPERATOR_AGENT_INSTANCE),
                )
                handle = self.book.operator_agent_instance(record.agent_instance, operator)
                AddressBook.verify(handle, record_id)
                self._close_if_exists(
                    self.book.agent_instance(service_id, record.agent_id, record.agent_instance), caller
                )
                self._close_if_exists(self.book.instance_claim(record.agent_instance), caller)
                self.records.close(handle, caller)
            self.records.close(operator_index_handle, caller)

            self._apply_kernel(service, "unbond", count=num_instances)
            self._save_service(service)
            self.events.emit(
                OperatorUnbonded(service_id=service_id, operator=operator, num_instances=num_instances, refund=refund)
            )
            logger.info(f"Operator {operator.hex()[:16]} unbonded from service {service_id} (refund={refund})")
            return refund

    # =========================================================================
    # Slashing and draining
    # =========================================================================

    def slash(
        self,
        caller: AccountId,
        service_id: int,
        agent_instances: Sequence[AccountId],
        amounts: Sequence[int],
    ) -> int:
        """
        Forfeit operator bond for misbehaving instances.

        Each deduction is capped at the operator's current bond and moved
        into the registry penalty pool; no value leaves the wallet.

        Returns:
            Total amount slashed.
        """
        with self._transaction("slash"):
            registry = self._load_registry()
            service = self._load_service(service_id)
            require(
                service.state == ServiceState.DEPLOYED,
                ErrorCode.WRONG_SERVICE_STATE,
                state=service.state.name,
            )
            require(len(agent_instances) == len(amounts), ErrorCode.WRONG_ARRAY_LENGTH)
            require(self._multisig_authorizes(service, caller), ErrorCode.ONLY_OWN_SERVICE_MULTISIG)

            total = 0
            for agent_instance, amount in zip(agent_instances, amounts):
                require(amount > 0, ErrorCode.INVALID_SLASH_AMOUNT, amount=amount)
                claim = self.records.load_optional(InstanceClaimRecord, self.book.instance_claim(agent_instance))
                require(
                    claim is not None and claim.service_id == service_id,
                    ErrorCode.AGENT_NOT_IN_SERVICE,
                    agent_instance=agent_instance.hex(),
                )
                record = self.records.load(
                    OperatorAgentInstanceRecord,
                    self.book.operator_agent_instance(agent_instance, claim.operator),
                )
                require(record.service_id == service_id, ErrorCode.AGENT_NOT_IN_SERVICE)

                bond_handle = self.book.operator_bond(service_id, record.operator)
                bond = self.records.load(OperatorBondRecord, bond_handle)
                require(bond.operator == record.operator, ErrorCode.WRONG_OPERATOR)
                require(bond.bond > 0, ErrorCode.INCORRECT_AGENT_BONDING_VALUE, operator=bond.operator.hex())

                slashed = min(bond.bond, amount)
                bond.bond = checked_sub(bond.bond, slashed)
                self.records.save(bond_handle, bond)
                registry.slashed_funds = checked_add(registry.slashed_funds, slashed)
                total += slashed
                self.events.emit(OperatorSlashed(service_id=service_id, operator=record.operator, amount=slashed))

            self._save_registry(registry)
            logger.info(f"Service {service_id}: slashed {total}")
            return total

    def _multisig_authorizes(self, service: ServiceRecord, caller: AccountId) -> bool:
        if service.multisig.is_zero() or caller != service.multisig:
            return False
        if not self.accounts.exists(service.multisig):
            return False
        implementation = self._implementations.get(self.accounts.owner_of(service.multisig))
        if implementation is None:
            return False
        return implementation.is_authorized_caller(self.accounts, service.multisig, caller)

    def drain(self, caller: AccountId) -> int:
        """Sweep the penalty pool to the drainer. Returns the amount drained."""
        with self._transaction("drain"), self._locked() as registry:
            require(caller == registry.drainer, ErrorCode.NOT_DRAINER)
            amount = registry.slashed_funds
            if amount > 0:
                registry.slashed_funds = 0
                self._pay_out(self._wallet(registry), registry.drainer, amount)
                self._save_registry(registry)
                self.events.emit(Drained(drainer=registry.drainer, amount=amount))
                logger.info(f"Drained {amount} to {registry.drainer.hex()[:16]}")
            return amount

    # =========================================================================
    # Read API
    # =========================================================================

    def get_registry(self) -> RegistryRecord:
        return self._load_registry()

    def get_service(self, service_id: int) -> ServiceRecord:
        return self._load_service(service_id)

    def check_service(self, service_id: int) -> ServiceRecord:
        """Load a service and require a non-empty role table."""
        service = self._load_service(service_id)
        index = self.records.load_optional(AgentIdsIndexRecord, self.book.agent_ids_index(service_id))
        require(index is not None and len(index.agent_ids) > 0, ErrorCode.NO_AGENT_IDS, service_id=service_id)
        return service

    def get_agent_params(self, service_id: int) -> List[AgentRole]:
        index = self.records.load_optional(AgentIdsIndexRecord, self.book.agent_ids_index(service_id))
        return list(index.agent_ids) if index is not None else []

    def get_slot_count(self, service_id: int, agent_id: int) -> int:
        slot = self.records.load_optional(SlotCounterRecord, self.book.agent_slot(service_id, agent_id))
        return slot.count if slot is not None else 0

    def get_service_instances(self, service_id: int) -> List[AccountId]:
        index = self.records.load_optional(
            ServiceInstancesIndexRecord, self.book.service_instances_index(service_id)
        )
        return list(index.agent_instances) if index is not None else []

    def get_operator_instances(self, service_id: int, operator: AccountId) -> List[AccountId]:
        """Agent instances registered by `operator` in `service_id`."""
        index = self.records.load_optional(
            OperatorInstancesIndexRecord, self.book.operator_instances_index(service_id, operator)
        )
        if index is None:
            return []
        instances = []
        for record_id in index.operator_agent_instances:
            record = self.records.load(
                OperatorAgentInstanceRecord,
                DerivedAddress(record_id, 0, AddressKind.OPERATOR_AGENT_INSTANCE),
            )
            instances.append(record.agent_instance)
        return instances

    def get_operator_bond(self, service_id: int, operator: AccountId) -> int:
        bond = self.records.load_optional(OperatorBondRecord, self.book.operator_bond(service_id, operator))
        return bond.bond if bond is not None else 0

    def get_instance_operator(self, agent_instance: AccountId) -> Optional[AccountId]:
        claim = self.records.load_optional(InstanceClaimRecord, self.book.instance_claim(agent_instance))
        return claim.operator if claim is not None else None

    def authorized_multisigs(self) -> List[AccountId]:
        whitelist = self.records.load(MultisigWhitelistRecord, self.book.multisig_whitelist(self.address))
        return list(whitelist.multisigs)

    def wallet_balance(self) -> int:
        return self.ledger.balance_of(self._wallet(self._load_registry()))
