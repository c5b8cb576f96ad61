"""
Stateful property test driving the registry through random operation sequences.

Invariants:
- Wallet holds exactly: paid security deposit + all operator bonds + penalty pool
- Lifecycle kernel invariants hold for the persisted service
- Registered instance count matches the service instance index while staffed
- The registry lock is never left held
"""

from __future__ import annotations

from typing import List

from hypothesis import HealthCheck, settings
from hypothesis import strategies as st
from hypothesis.stateful import RuleBasedStateMachine, initialize, invariant, precondition, rule

from asr.registry.config import RegistryConfig
from asr.registry.errors import RegistryError
from asr.registry.kernels import service_lifecycle_fsm_ref as lifecycle
from asr.registry.keys import AccountId
from asr.registry.multisig import ThresholdMultisig
from asr.registry.program import ServiceRegistry
from asr.registry.state import AgentParams, ServiceState
from asr.registry.storage import Ledger

from .conftest import CONFIG_HASH, FUNDING

_DEPOSIT_HELD = (
    ServiceState.ACTIVE_REGISTRATION,
    ServiceState.FINISHED_REGISTRATION,
    ServiceState.DEPLOYED,
)


class RegistryMachine(RuleBasedStateMachine):
    def __init__(self) -> None:
        super().__init__()
        self.owner = AccountId.from_label("sm-owner")
        self.manager = AccountId.from_label("sm-manager")
        self.drainer = AccountId.from_label("sm-drainer")
        self.service_owner = AccountId.from_label("sm-service-owner")
        self.operators = [AccountId.from_label(f"sm-operator-{i}") for i in range(3)]
        self.ledger = Ledger()
        self.ledger.airdrop(self.owner, FUNDING)
        self.ledger.airdrop(self.manager, FUNDING)
        self.registry = ServiceRegistry(
            AccountId.from_label("sm-program"), ledger=self.ledger, config=RegistryConfig()
        )
        self.multisig_impl = ThresholdMultisig(AccountId.from_label("sm-multisig"))
        self.registered: List[AccountId] = []
        self.next_instance = 0
        self.service_id = 0

    @initialize()
    def init(self) -> None:
        self.registry.initialize(
            self.owner, "Service Registry", "SERVICE", "https://registry.example/", self.manager, self.drainer
        )
        self.registry.install_multisig_implementation(self.multisig_impl)
        self.registry.set_multisig_permission(self.owner, self.multisig_impl.implementation_id, True)
        self.service_id = self.registry.create(self.manager, self.service_owner, CONFIG_HASH, threshold=4)

    def _state(self) -> ServiceState:
        if not self.service_id:
            return ServiceState.NON_EXISTENT
        return self.registry.get_service(self.service_id).state

    def _has_roles(self) -> bool:
        if not self.service_id:
            return False
        return bool(self.registry.get_agent_params(self.service_id))

    @precondition(lambda self: self._state() is ServiceState.PRE_REGISTRATION and not self._has_roles())
    @rule()
    def configure_roles(self) -> None:
        self.registry.set_roles(
            self.manager,
            self.service_id,
            self.service_owner,
            [1, 2],
            [AgentParams(3, 100), AgentParams(2, 200)],
        )

    @precondition(lambda self: self._state() is ServiceState.PRE_REGISTRATION and self._has_roles())
    @rule()
    def activate(self) -> None:
        self.registry.activate_registration(self.manager, self.service_id, self.service_owner)

    @precondition(lambda self: self._state() is ServiceState.ACTIVE_REGISTRATION)
    @rule(operator=st.integers(0, 2), agent_id=st.sampled_from([1, 2, 3]), count=st.integers(1, 2))
    def register(self, operator: int, agent_id: int, count: int) -> None:
        instances = [AccountId.from_label(f"sm-instance-{self.next_instance + i}") for i in range(count)]
        self.next_instance += count
        before = self.registry.get_service(self.service_id).num_agent_instances
        try:
            self.registry.register_agents(
                self.manager, self.service_id, self.operators[operator], instances, [agent_id] * count
            )
        except RegistryError:
            assert self.registry.get_service(self.service_id).num_agent_instances == before
            return
        self.registered.extend(instances)

    @precondition(lambda self: self._state() is ServiceState.FINISHED_REGISTRATION)
    @rule()
    def deploy(self) -> None:
        self.registry.deploy(
            self.manager, self.service_id, self.service_owner, self.multisig_impl.implementation_id
        )

    @precondition(lambda self: self._state() is ServiceState.DEPLOYED)
    @rule(index=st.integers(0, 4), amount=st.integers(1, 250))
    def slash(self, index: int, amount: int) -> None:
        service = self.registry.get_service(self.service_id)
        instance = self.registry.get_service_instances(self.service_id)[index]
        pool_before = self.registry.get_registry().slashed_funds
        try:
            slashed = self.registry.slash(service.multisig, self.service_id, [instance], [amount])
        except RegistryError:
            assert self.registry.get_registry().slashed_funds == pool_before
            return
        assert 0 < slashed <= amount
        assert self.registry.get_registry().slashed_funds == pool_before + slashed

    @rule()
    def drain(self) -> None:
        pool = self.registry.get_registry().slashed_funds
        balance = self.ledger.balance_of(self.drainer)
        assert self.registry.drain(self.drainer) == pool
        assert self.ledger.balance_of(self.drainer) == balance + pool

    @precondition(lambda self: self._state() in _DEPOSIT_HELD)
    @rule()
    def terminate(self) -> None:
        deposit = self.registry.get_service(self.service_id).security_deposit
        refunded = self.registry.terminate(self.manager, self.service_id, self.service_owner)
        assert refunded == deposit

    @precondition(lambda self: self._state() is ServiceState.TERMINATED_BONDED)
    @rule(operator=st.integers(0, 2))
    def unbond(self, operator: int) -> None:
        op = self.operators[operator]
        bond = self.registry.get_operator_bond(self.service_id, op)
        if not self.registry.get_operator_instances(self.service_id, op):
            return
        balance = self.ledger.balance_of(op)
        assert self.registry.unbond(self.manager, self.service_id, op) == bond
        assert self.ledger.balance_of(op) == balance + bond
        assert self.registry.get_operator_bond(self.service_id, op) == 0

    @invariant()
    def wallet_is_fully_backed(self) -> None:
        if not self.service_id:
            return
        service = self.registry.get_service(self.service_id)
        deposit = service.security_deposit if service.state in _DEPOSIT_HELD else 0
        bonds = sum(self.registry.get_operator_bond(self.service_id, op) for op in self.operators)
        pool = self.registry.get_registry().slashed_funds
        assert self.registry.wallet_balance() == deposit + bonds + pool

    @invariant()
    def kernel_invariants_hold(self) -> None:
        if not self.service_id:
            return
        service = self.registry.get_service(self.service_id)
        state = lifecycle.State(
            status=service.state.name,
            max_num_agent_instances=service.max_num_agent_instances,
            num_agent_instances=service.num_agent_instances,
        )
        ok, failed = lifecycle.check_invariants(state)
        assert ok, failed

    @invariant()
    def instance_index_matches_count(self) -> None:
        if not self.service_id:
            return
        service = self.registry.get_service(self.service_id)
        if service.state in _DEPOSIT_HELD:
            assert len(self.registry.get_service_instances(self.service_id)) == service.num_agent_instances

    @invariant()
    def lock_released(self) -> None:
        if self.service_id:
            assert not self.registry.get_registry().locked


TestRegistryMachine = RegistryMachine.TestCase
TestRegistryMachine.settings = settings(
    max_examples=25,
    stateful_step_count=30,
    deadline=None,
    derandomize=True,
    suppress_health_check=[HealthCheck.too_slow],
)
