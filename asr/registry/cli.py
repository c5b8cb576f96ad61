from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, List, Optional, Sequence

from asr.logging import LoggingOptions, configure_logging

from .addresses import AddressBook, AddressKind, DerivedAddress
from .config import RegistryConfig
from .keys import AccountId
from .multisig import ThresholdMultisig
from .program import ServiceRegistry
from .state import AgentParams
from .storage import Ledger

SIMULATION_FUNDING = 10**15


def _account(value: str) -> AccountId:
    """Parse a 64-char hex id, or hash anything else as a label."""
    if len(value) == 64:
        try:
            return AccountId.from_hex(value)
        except ValueError:
            pass
    return AccountId.from_label(value)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Agent Service Registry CLI")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON, TOML or YAML config file",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    _build_derive_parser(subparsers)

    simulate = subparsers.add_parser("simulate", help="Run a full service lifecycle and print a summary")
    simulate.add_argument(
        "--program",
        type=str,
        default="asr-registry",
        help="Program id (hex) or label",
    )
    simulate.add_argument(
        "--slash",
        type=int,
        default=150,
        help="Amount to slash from the first registered instance",
    )

    subparsers.add_parser("config", help="Print the effective configuration")
    return parser


def _build_derive_parser(subparsers: Any) -> None:
    derive = subparsers.add_parser("derive", help="Print a derived record address")
    derive.add_argument(
        "kind",
        choices=[kind.name.lower() for kind in AddressKind],
        help="Record kind",
    )
    derive.add_argument("--program", type=str, required=True, help="Program id (hex) or label")
    derive.add_argument("--service-id", type=int, default=1)
    derive.add_argument("--agent-id", type=int, default=1)
    derive.add_argument("--instance", type=str, default=None, help="Agent instance id (hex) or label")
    derive.add_argument("--operator", type=str, default=None, help="Operator id (hex) or label")


def _derive_handle(book: AddressBook, args: argparse.Namespace) -> DerivedAddress:
    kind = AddressKind[args.kind.upper()]
    instance = _account(args.instance) if args.instance else AccountId.zero()
    operator = _account(args.operator) if args.operator else AccountId.zero()
    registry = book.registry().address

    if kind is AddressKind.REGISTRY:
        return book.registry()
    if kind is AddressKind.WALLET:
        return book.wallet(registry)
    if kind is AddressKind.MULTISIG_WHITELIST:
        return book.multisig_whitelist(registry)
    if kind is AddressKind.SERVICE:
        return book.service(args.service_id)
    if kind is AddressKind.AGENT_PARAM:
        return book.agent_param(args.service_id, args.agent_id)
    if kind is AddressKind.AGENT_IDS_INDEX:
        return book.agent_ids_index(args.service_id)
    if kind is AddressKind.AGENT_SLOT:
        return book.agent_slot(args.service_id, args.agent_id)
    if kind is AddressKind.SERVICE_INSTANCES_INDEX:
        return book.service_instances_index(args.service_id)
    if kind is AddressKind.AGENT_INSTANCE:
        return book.agent_instance(args.service_id, args.agent_id, instance)
    if kind is AddressKind.OPERATOR_AGENT_INSTANCE:
        return book.operator_agent_instance(instance, operator)
    if kind is AddressKind.OPERATOR_INSTANCES_INDEX:
        return book.operator_instances_index(args.service_id, operator)
    if kind is AddressKind.OPERATOR_BOND:
        return book.operator_bond(args.service_id, operator)
    if kind is AddressKind.INSTANCE_CLAIM:
        return book.instance_claim(instance)
    return book.multisig([instance])


def _run_derive(args: argparse.Namespace) -> Dict[str, Any]:
    program_id = _account(args.program)
    handle = _derive_handle(AddressBook(program_id), args)
    return {
        "program_id": program_id.hex(),
        "kind": handle.kind.value,
        "address": handle.address.hex(),
        "bump": handle.bump,
    }


def run_simulation(config: RegistryConfig, program: str = "asr-registry", slash_amount: int = 150) -> Dict[str, Any]:
    """
    Drive one service through its whole lifecycle on a fresh ledger.

    Two roles (3 slots @ 100, 2 slots @ 200), two operators, threshold 4 of 5.
    """
    ledger = Ledger()
    registry = ServiceRegistry(_account(program), ledger=ledger, config=config)

    owner = AccountId.from_label("sim-owner")
    manager = AccountId.from_label("sim-manager")
    drainer = AccountId.from_label("sim-drainer")
    service_owner = AccountId.from_label("sim-service-owner")
    operators = [AccountId.from_label("sim-operator-a"), AccountId.from_label("sim-operator-b")]
    for account in (owner, manager):
        ledger.airdrop(account, SIMULATION_FUNDING)

    registry.initialize(
        owner,
        config.registry.name,
        config.registry.symbol,
        config.registry.base_uri,
        manager,
        drainer,
    )
    multisig_impl = ThresholdMultisig(AccountId.from_label("sim-threshold-multisig"))
    registry.install_multisig_implementation(multisig_impl)
    registry.set_multisig_permission(owner, multisig_impl.implementation_id, True)

    config_hash = AccountId.from_label("sim-config").value
    service_id = registry.create(manager, service_owner, config_hash, threshold=4)
    registry.set_roles(
        manager, service_id, service_owner, [1, 2], [AgentParams(3, 100), AgentParams(2, 200)]
    )
    registry.activate_registration(manager, service_id, service_owner)

    instances: List[AccountId] = [AccountId.from_label(f"sim-instance-{i}") for i in range(5)]
    bonds = [
        registry.register_agents(manager, service_id, operators[0], instances[:3], [1, 1, 1]),
        registry.register_agents(manager, service_id, operators[1], instances[3:], [2, 2]),
    ]

    multisig = registry.deploy(manager, service_id, service_owner, multisig_impl.implementation_id)
    slashed = registry.slash(multisig, service_id, [instances[0]], [slash_amount])
    drained = registry.drain(drainer)
    deposit_refund = registry.terminate(manager, service_id, service_owner)
    unbond_refunds = [registry.unbond(manager, service_id, operator) for operator in operators]

    service = registry.get_service(service_id)
    return {
        "service_id": service_id,
        "state": service.state.name,
        "multisig": multisig.hex(),
        "bonds": bonds,
        "slashed": slashed,
        "drained": drained,
        "deposit_refund": deposit_refund,
        "unbond_refunds": unbond_refunds,
        "wallet_balance": registry.wallet_balance(),
        "events": [event.name for event in registry.events.events],
    }


def _configure_logging(config: RegistryConfig) -> None:
    configure_logging(
        LoggingOptions(
            level=config.logging.level,
            format=config.logging.format,
            file=config.logging.file,
            redact=config.logging.redact,
        )
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else sys.argv[1:])

    config = RegistryConfig.load(args.config)
    _configure_logging(config)

    if args.command == "derive":
        result = _run_derive(args)
    elif args.command == "simulate":
        result = run_simulation(config, program=args.program, slash_amount=args.slash)
    elif args.command == "config":
        result = config.to_dict()
    else:
        raise ValueError(f"Unknown command: {args.command}")

    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
