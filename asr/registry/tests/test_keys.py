"""
Tests for account identity and address derivation.

Tests cover:
- AccountId construction and ordering
- Ed25519 keypairs (sign / verify)
- Off-curve derivation and bump search
- AddressBook verification
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from asr.registry.addresses import AddressBook, AddressKind, agent_id_bytes, service_id_bytes
from asr.registry.errors import DerivationMismatchError, ErrorCode, ValidationError
from asr.registry.keys import (
    MAX_SEEDS,
    AccountId,
    Keypair,
    create_address,
    derive,
    is_on_curve,
)


PROGRAM = AccountId.from_label("program")


class TestAccountId:
    """Tests for AccountId."""

    def test_requires_32_bytes(self):
        """Should reject ids that are not 32 bytes."""
        with pytest.raises(ValueError):
            AccountId(b"\x01" * 31)

    def test_zero(self):
        assert AccountId.zero().is_zero()
        assert not AccountId.from_label("x").is_zero()

    def test_hex_roundtrip(self):
        account = AccountId.from_label("alice")
        assert AccountId.from_hex(account.hex()) == account

    def test_ordering_is_bytewise(self):
        low = AccountId(b"\x00" * 31 + b"\x01")
        high = AccountId(b"\x01" + b"\x00" * 31)
        assert sorted([high, low]) == [low, high]


class TestKeypair:
    """Tests for Ed25519 keypairs."""

    def test_sign_verify(self):
        keypair = Keypair.generate()
        signature = keypair.sign(b"register")
        assert Keypair.verify(keypair.account_id, b"register", signature)

    def test_verify_rejects_tampered_message(self):
        keypair = Keypair.generate()
        signature = keypair.sign(b"register")
        assert not Keypair.verify(keypair.account_id, b"deregister", signature)

    def test_deterministic_from_private_bytes(self):
        assert Keypair(b"\x07" * 32).account_id == Keypair(b"\x07" * 32).account_id

    def test_public_keys_are_on_curve(self):
        """Signer keys are valid curve points, so derived ids can never collide with them."""
        for _ in range(5):
            assert is_on_curve(Keypair.generate().account_id.value)


class TestDerive:
    """Tests for derived addresses."""

    def test_derived_address_is_off_curve(self):
        address, bump = derive([b"service", service_id_bytes(1)], PROGRAM)
        assert not is_on_curve(address.value)
        assert 0 <= bump <= 255

    def test_deterministic(self):
        assert derive([b"a", b"b"], PROGRAM) == derive([b"a", b"b"], PROGRAM)

    def test_program_id_separates_addresses(self):
        other = AccountId.from_label("other-program")
        assert derive([b"a"], PROGRAM)[0] != derive([b"a"], other)[0]

    def test_derive_matches_create_address_with_bump(self):
        address, bump = derive([b"registry"], PROGRAM)
        assert create_address([b"registry", bytes([bump])], PROGRAM) == address

    def test_rejects_long_seed(self):
        with pytest.raises(ValidationError) as exc:
            derive([b"x" * 33], PROGRAM)
        assert exc.value.code is ErrorCode.INVALID_SEEDS

    def test_rejects_too_many_seeds(self):
        with pytest.raises(ValidationError):
            derive([b"s"] * MAX_SEEDS, PROGRAM)

    @given(st.lists(st.binary(max_size=32), max_size=4))
    @settings(max_examples=40, deadline=None, derandomize=True)
    def test_any_valid_seeds_derive_off_curve(self, seeds):
        address, _ = derive(seeds, PROGRAM)
        assert not is_on_curve(address.value)


class TestAddressBook:
    """Tests for AddressBook handles."""

    def test_kinds_do_not_collide(self):
        book = AddressBook(PROGRAM)
        instance = AccountId.from_label("instance")
        handles = [
            book.registry(),
            book.service(1),
            book.agent_param(1, 1),
            book.agent_slot(1, 1),
            book.agent_ids_index(1),
            book.service_instances_index(1),
            book.instance_claim(instance),
        ]
        assert len({h.address for h in handles}) == len(handles)

    def test_handle_records_kind(self):
        assert AddressBook(PROGRAM).service(3).kind is AddressKind.SERVICE

    def test_verify_rejects_mismatch(self):
        book = AddressBook(PROGRAM)
        with pytest.raises(DerivationMismatchError):
            AddressBook.verify(book.service(1), book.service(2).address)

    def test_verify_accepts_match(self):
        book = AddressBook(PROGRAM)
        handle = book.service(1)
        assert AddressBook.verify(handle, handle.address) is handle

    @pytest.mark.parametrize("service_id", [-1, 2**128])
    def test_service_id_out_of_range(self, service_id):
        with pytest.raises(ValidationError) as exc:
            AddressBook(PROGRAM).service(service_id)
        assert exc.value.code is ErrorCode.INVALID_ARGUMENT

    @pytest.mark.parametrize("agent_id", [-1, 2**32])
    def test_agent_id_out_of_range(self, agent_id):
        with pytest.raises(ValidationError) as exc:
            agent_id_bytes(agent_id)
        assert exc.value.code is ErrorCode.INVALID_ARGUMENT

    def test_id_bounds_encode(self):
        assert service_id_bytes(2**128 - 1) == b"\xff" * 16
        assert agent_id_bytes(2**32 - 1) == b"\xff" * 4
