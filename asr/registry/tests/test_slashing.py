"""
Tests for slashing and draining the penalty pool.
"""

import pytest

from asr.registry.errors import (
    AccessControlError,
    ErrorCode,
    FundsError,
    StateViolationError,
    ValidationError,
)
from asr.registry.events import Drained, OperatorSlashed
from asr.registry.keys import AccountId


@pytest.fixture
def slashable(registry, actors, active_service, multisig_impl):
    """Deployed service where operator A holds a single 100 bond."""
    sid = active_service
    operator_c = AccountId.from_label("operator-c")
    registry.register_agents(actors.manager, sid, actors.operator_a, actors.instances[:1], [1])
    registry.register_agents(actors.manager, sid, operator_c, actors.instances[1:3], [1, 1])
    registry.register_agents(actors.manager, sid, actors.operator_b, actors.instances[3:5], [2, 2])
    multisig = registry.deploy(actors.manager, sid, actors.service_owner, multisig_impl.implementation_id)
    return sid, multisig


class TestSlash:
    """Tests for slash."""

    def test_slash_capped_at_bond(self, registry, actors, slashable):
        sid, multisig = slashable
        assert registry.slash(multisig, sid, [actors.instances[0]], [150]) == 100
        assert registry.get_operator_bond(sid, actors.operator_a) == 0
        assert registry.get_registry().slashed_funds == 100
        event = registry.events.of_type(OperatorSlashed)[-1]
        assert (event.operator, event.amount) == (actors.operator_a, 100)

    def test_partial_slash(self, registry, actors, slashable):
        sid, multisig = slashable
        assert registry.slash(multisig, sid, [actors.instances[3]], [150]) == 150
        assert registry.get_operator_bond(sid, actors.operator_b) == 250

    def test_slash_does_not_move_value(self, registry, actors, slashable):
        sid, multisig = slashable
        before = registry.wallet_balance()
        registry.slash(multisig, sid, [actors.instances[0]], [50])
        assert registry.wallet_balance() == before

    def test_batch(self, registry, actors, slashable):
        sid, multisig = slashable
        total = registry.slash(multisig, sid, [actors.instances[1], actors.instances[2]], [80, 80])
        assert total == 160
        assert registry.get_operator_bond(sid, AccountId.from_label("operator-c")) == 40

    def test_only_service_multisig(self, registry, actors, slashable):
        sid, _ = slashable
        with pytest.raises(AccessControlError) as exc:
            registry.slash(actors.manager, sid, [actors.instances[0]], [1])
        assert exc.value.code is ErrorCode.ONLY_OWN_SERVICE_MULTISIG

    def test_zero_amount(self, registry, actors, slashable):
        sid, multisig = slashable
        with pytest.raises(ValidationError) as exc:
            registry.slash(multisig, sid, [actors.instances[0]], [0])
        assert exc.value.code is ErrorCode.INVALID_SLASH_AMOUNT

    def test_unknown_instance(self, registry, actors, slashable):
        sid, multisig = slashable
        with pytest.raises(ValidationError) as exc:
            registry.slash(multisig, sid, [actors.instances[7]], [1])
        assert exc.value.code is ErrorCode.AGENT_NOT_IN_SERVICE

    def test_empty_bond(self, registry, actors, slashable):
        sid, multisig = slashable
        registry.slash(multisig, sid, [actors.instances[0]], [100])
        with pytest.raises(FundsError):
            registry.slash(multisig, sid, [actors.instances[0]], [1])

    def test_length_mismatch(self, registry, actors, slashable):
        sid, multisig = slashable
        with pytest.raises(ValidationError) as exc:
            registry.slash(multisig, sid, [actors.instances[0]], [1, 2])
        assert exc.value.code is ErrorCode.WRONG_ARRAY_LENGTH

    def test_requires_deployed(self, registry, actors, finished_service):
        with pytest.raises(StateViolationError):
            registry.slash(actors.manager, finished_service, [actors.instances[0]], [1])

    def test_failed_batch_rolls_back(self, registry, actors, slashable):
        sid, multisig = slashable
        with pytest.raises(ValidationError):
            registry.slash(multisig, sid, [actors.instances[3], actors.instances[7]], [10, 10])
        assert registry.get_operator_bond(sid, actors.operator_b) == 400
        assert registry.get_registry().slashed_funds == 0


class TestDrain:
    """Tests for drain."""

    def test_drain_pays_drainer(self, registry, actors, slashable):
        sid, multisig = slashable
        registry.slash(multisig, sid, [actors.instances[0]], [150])
        assert registry.drain(actors.drainer) == 100
        assert registry.ledger.balance_of(actors.drainer) == 100
        assert registry.get_registry().slashed_funds == 0
        assert registry.events.of_type(Drained)[-1].amount == 100
        assert registry.drain(actors.drainer) == 0

    def test_only_drainer(self, registry, actors):
        with pytest.raises(AccessControlError) as exc:
            registry.drain(actors.owner)
        assert exc.value.code is ErrorCode.NOT_DRAINER

    def test_unbond_refunds_remaining_bond(self, registry, actors, slashable):
        sid, multisig = slashable
        registry.slash(multisig, sid, [actors.instances[3]], [150])
        registry.drain(actors.drainer)
        registry.terminate(actors.manager, sid, actors.service_owner)
        assert registry.unbond(actors.manager, sid, actors.operator_b) == 250
        assert registry.unbond(actors.manager, sid, actors.operator_a) == 100
        assert registry.unbond(actors.manager, sid, AccountId.from_label("operator-c")) == 200
        assert registry.wallet_balance() == 0
