"""
Tests for deployment, the multisig whitelist and the default threshold multisig.
"""

import pytest

from asr.registry.errors import (
    AccessControlError,
    ConfigurationError,
    ErrorCode,
    ExistenceError,
    StateViolationError,
    ValidationError,
)
from asr.registry.events import MultisigPermissionChanged, ServiceDeployed
from asr.registry.keys import AccountId
from asr.registry.multisig import ThresholdMultisig
from asr.registry.state import AgentParams, ServiceState


class TestWhitelist:
    """Tests for set_multisig_permission."""

    def test_fixture_whitelists_impl(self, registry, multisig_impl):
        assert registry.authorized_multisigs() == [multisig_impl.implementation_id]
        assert registry.events.of_type(MultisigPermissionChanged)[-1].allowed is True

    def test_idempotent_add(self, registry, actors, multisig_impl):
        assert not registry.set_multisig_permission(actors.owner, multisig_impl.implementation_id, True)
        assert len(registry.authorized_multisigs()) == 1

    def test_remove(self, registry, actors, multisig_impl):
        assert registry.set_multisig_permission(actors.owner, multisig_impl.implementation_id, False)
        assert registry.authorized_multisigs() == []
        assert not registry.set_multisig_permission(actors.owner, multisig_impl.implementation_id, False)

    def test_cap(self, registry, actors):
        for i in range(registry.config.limits.max_multisigs - 1):
            registry.set_multisig_permission(actors.owner, AccountId.from_label(f"impl-{i}"), True)
        with pytest.raises(ConfigurationError) as exc:
            registry.set_multisig_permission(actors.owner, AccountId.from_label("one-too-many"), True)
        assert exc.value.code is ErrorCode.MAX_MULTISIGS_REACHED
        assert len(registry.authorized_multisigs()) == registry.config.limits.max_multisigs

    def test_owner_only(self, registry, actors):
        with pytest.raises(AccessControlError):
            registry.set_multisig_permission(actors.manager, AccountId.from_label("x"), True)

    def test_zero_id(self, registry, actors):
        with pytest.raises(ValidationError):
            registry.set_multisig_permission(actors.owner, AccountId.zero(), True)


class TestDeploy:
    """Tests for deploy."""

    def test_deploy(self, registry, actors, deployed_service, multisig_impl):
        sid, multisig = deployed_service
        service = registry.get_service(sid)
        assert service.state is ServiceState.DEPLOYED
        assert service.multisig == multisig
        account = multisig_impl.load(registry.accounts, multisig)
        assert account.threshold == 4
        assert account.agent_instances == sorted(actors.instances[:5])
        assert registry.accounts.owner_of(multisig) == multisig_impl.implementation_id
        assert registry.events.of_type(ServiceDeployed)[-1].multisig == multisig

    def test_instance_order_does_not_matter(self, registry, actors, active_service, multisig_impl):
        """Deployment sorts instances, so the multisig address depends only on the set."""
        sid = active_service
        reordered = list(reversed(actors.instances[:3]))
        registry.register_agents(actors.manager, sid, actors.operator_a, reordered, [1, 1, 1])
        registry.register_agents(actors.manager, sid, actors.operator_b, actors.instances[3:5], [2, 2])
        multisig = registry.deploy(actors.manager, sid, actors.service_owner, multisig_impl.implementation_id)
        assert multisig == multisig_impl.book.multisig(sorted(actors.instances[:5])).address

    def test_requires_finished_registration(self, registry, actors, active_service, multisig_impl):
        with pytest.raises(StateViolationError):
            registry.deploy(actors.manager, active_service, actors.service_owner, multisig_impl.implementation_id)

    def test_not_whitelisted(self, registry, actors, finished_service):
        rogue = ThresholdMultisig(AccountId.from_label("rogue"))
        registry.install_multisig_implementation(rogue)
        with pytest.raises(ConfigurationError) as exc:
            registry.deploy(actors.manager, finished_service, actors.service_owner, rogue.implementation_id)
        assert exc.value.code is ErrorCode.UNAUTHORIZED_MULTISIG

    def test_whitelisted_but_not_installed(self, registry, actors, finished_service):
        ghost = AccountId.from_label("ghost")
        registry.set_multisig_permission(actors.owner, ghost, True)
        with pytest.raises(ConfigurationError):
            registry.deploy(actors.manager, finished_service, actors.service_owner, ghost)
        assert registry.get_service(finished_service).state is ServiceState.FINISHED_REGISTRATION

    def test_wrong_caller(self, registry, actors, finished_service, multisig_impl):
        with pytest.raises(AccessControlError):
            registry.deploy(actors.owner, finished_service, actors.service_owner, multisig_impl.implementation_id)

    def test_redeploy_same_instances_collides(self, registry, actors, deployed_service, multisig_impl):
        sid, _ = deployed_service
        registry.terminate(actors.manager, sid, actors.service_owner)
        registry.unbond(actors.manager, sid, actors.operator_a)
        registry.unbond(actors.manager, sid, actors.operator_b)
        registry.set_roles(actors.manager, sid, actors.service_owner, [1, 2], [AgentParams(3, 100), AgentParams(2, 200)])
        registry.activate_registration(actors.manager, sid, actors.service_owner)
        registry.register_agents(actors.manager, sid, actors.operator_a, actors.instances[:3], [1, 1, 1])
        registry.register_agents(actors.manager, sid, actors.operator_b, actors.instances[3:5], [2, 2])
        with pytest.raises(ExistenceError):
            registry.deploy(actors.manager, sid, actors.service_owner, multisig_impl.implementation_id)


class TestThresholdMultisig:
    """Tests for the default implementation."""

    def test_threshold_bounds(self, registry, actors, multisig_impl):
        instances = actors.instances[:2]
        with pytest.raises(ValidationError):
            multisig_impl.create(registry.accounts, instances, 0, b"", actors.manager)
        with pytest.raises(ValidationError):
            multisig_impl.create(registry.accounts, instances, 3, b"", actors.manager)

    def test_authorized_caller(self, registry, actors, multisig_impl):
        multisig = multisig_impl.create(registry.accounts, actors.instances[:2], 2, b"\x01\x02", actors.manager)
        assert multisig_impl.is_authorized_caller(registry.accounts, multisig, multisig)
        assert not multisig_impl.is_authorized_caller(registry.accounts, multisig, actors.manager)
        other = ThresholdMultisig(AccountId.from_label("other-impl"))
        assert not other.is_authorized_caller(registry.accounts, multisig, multisig)
        assert multisig_impl.load(registry.accounts, multisig).data == b"\x01\x02"
