"""Shared fixtures for registry tests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

import pytest

from asr.registry.config import RegistryConfig, reset_config
from asr.registry.keys import AccountId
from asr.registry.multisig import ThresholdMultisig
from asr.registry.program import ServiceRegistry
from asr.registry.state import AgentParams
from asr.registry.storage import Ledger

FUNDING = 10**15
CONFIG_HASH = bytes(range(1, 33))


@dataclass
class Actors:
    owner: AccountId
    manager: AccountId
    drainer: AccountId
    service_owner: AccountId
    operator_a: AccountId
    operator_b: AccountId
    instances: List[AccountId]


@pytest.fixture
def config() -> RegistryConfig:
    return RegistryConfig()


@pytest.fixture
def program_id() -> AccountId:
    return AccountId.from_label("test-registry-program")


@pytest.fixture
def actors() -> Actors:
    return Actors(
        owner=AccountId.from_label("owner"),
        manager=AccountId.from_label("manager"),
        drainer=AccountId.from_label("drainer"),
        service_owner=AccountId.from_label("service-owner"),
        operator_a=AccountId.from_label("operator-a"),
        operator_b=AccountId.from_label("operator-b"),
        instances=[AccountId.from_label(f"instance-{i}") for i in range(8)],
    )


@pytest.fixture
def ledger(actors: Actors) -> Ledger:
    ledger = Ledger()
    ledger.airdrop(actors.owner, FUNDING)
    ledger.airdrop(actors.manager, FUNDING)
    return ledger


@pytest.fixture
def multisig_impl() -> ThresholdMultisig:
    return ThresholdMultisig(AccountId.from_label("threshold-multisig"))


@pytest.fixture
def registry(program_id, ledger, config, actors, multisig_impl) -> ServiceRegistry:
    registry = ServiceRegistry(program_id, ledger=ledger, config=config)
    registry.initialize(
        actors.owner,
        "Service Registry",
        "SERVICE",
        "https://registry.example/ipfs/",
        actors.manager,
        actors.drainer,
    )
    registry.install_multisig_implementation(multisig_impl)
    registry.set_multisig_permission(actors.owner, multisig_impl.implementation_id, True)
    return registry


@pytest.fixture
def service_id(registry, actors) -> int:
    """Service 1 with roles {1: (3, 100), 2: (2, 200)} and threshold 4."""
    sid = registry.create(actors.manager, actors.service_owner, CONFIG_HASH, threshold=4)
    registry.set_roles(
        actors.manager,
        sid,
        actors.service_owner,
        [1, 2],
        [AgentParams(3, 100), AgentParams(2, 200)],
    )
    return sid


@pytest.fixture
def active_service(registry, actors, service_id) -> int:
    registry.activate_registration(actors.manager, service_id, actors.service_owner)
    return service_id


@pytest.fixture
def finished_service(registry, actors, active_service) -> int:
    registry.register_agents(
        actors.manager, active_service, actors.operator_a, actors.instances[:3], [1, 1, 1]
    )
    registry.register_agents(
        actors.manager, active_service, actors.operator_b, actors.instances[3:5], [2, 2]
    )
    return active_service


@pytest.fixture
def deployed_service(registry, actors, finished_service, multisig_impl):
    """Returns (service_id, multisig)."""
    multisig = registry.deploy(
        actors.manager, finished_service, actors.service_owner, multisig_impl.implementation_id
    )
    return finished_service, multisig


@pytest.fixture(autouse=True)
def _isolate_globals():
    """Undo configure_logging / set_config side effects between tests."""
    asr_logger = logging.getLogger("asr")
    handlers = list(asr_logger.handlers)
    level = asr_logger.level
    propagate = asr_logger.propagate
    yield
    for handler in asr_logger.handlers:
        if handler not in handlers:
            handler.close()
    asr_logger.handlers[:] = handlers
    asr_logger.setLevel(level)
    asr_logger.propagate = propagate
    reset_config()
