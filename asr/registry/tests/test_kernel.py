"""
Tests for the service lifecycle kernel.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from asr.registry.kernels import service_lifecycle_fsm_ref as lifecycle


def _run(state, tag, **args):
    return lifecycle.step(state, lifecycle.Command(tag=tag, args=args))


def _ok(state, tag, **args):
    result = _run(state, tag, **args)
    assert result.ok, result.error
    return result.state


class TestTransitions:
    """Tests for accepted and rejected transitions."""

    def test_happy_path(self):
        state = _ok(lifecycle.init_state(), "create")
        state = _ok(state, "configure", max_num_agent_instances=5)
        state = _ok(state, "activate_registration")
        state = _ok(state, "register_instances", count=3)
        assert state.status == "ACTIVE_REGISTRATION"
        result = _run(state, "register_instances", count=2)
        assert result.effects["finished"] is True
        state = _ok(result.state, "deploy")
        assert state.status == "DEPLOYED"
        state = _ok(state, "terminate")
        assert state.status == "TERMINATED_BONDED"
        state = _ok(state, "unbond", count=3)
        assert state.status == "TERMINATED_BONDED"
        state = _ok(state, "unbond", count=2)
        assert state == lifecycle.State("PRE_REGISTRATION", 5, 0)

    def test_terminate_unstaffed_returns_to_pre(self):
        state = lifecycle.State("ACTIVE_REGISTRATION", 5, 0)
        assert _ok(state, "terminate").status == "PRE_REGISTRATION"

    def test_create_twice(self):
        state = _ok(lifecycle.init_state(), "create")
        assert not _run(state, "create").ok

    def test_activate_without_slots(self):
        state = _ok(lifecycle.init_state(), "create")
        assert not _run(state, "activate_registration").ok

    def test_over_registration(self):
        state = lifecycle.State("ACTIVE_REGISTRATION", 2, 1)
        result = _run(state, "register_instances", count=2)
        assert not result.ok
        assert result.state is None

    def test_configure_outside_pre(self):
        assert not _run(lifecycle.State("ACTIVE_REGISTRATION", 2, 0), "configure", max_num_agent_instances=3).ok

    @pytest.mark.parametrize("status", ["NON_EXISTENT", "PRE_REGISTRATION", "TERMINATED_BONDED"])
    def test_terminate_rejected(self, status):
        num = 1 if status == "TERMINATED_BONDED" else 0
        assert not _run(lifecycle.State(status, 2, num), "terminate").ok

    def test_unbond_saturates(self):
        state = _ok(lifecycle.State("TERMINATED_BONDED", 5, 2), "unbond", count=9)
        assert state.num_agent_instances == 0

    def test_unknown_command(self):
        assert _run(lifecycle.init_state(), "explode").error == "unknown command: explode"

    def test_bool_is_not_a_count(self):
        assert not _run(lifecycle.State("ACTIVE_REGISTRATION", 2, 0), "register_instances", count=True).ok


class TestInvariants:
    """Tests for check_invariants."""

    def test_init_state_holds(self):
        assert lifecycle.check_invariants(lifecycle.init_state()) == (True, [])

    def test_detects_staffing_violations(self):
        ok, failed = lifecycle.check_invariants(lifecycle.State("DEPLOYED", 5, 3))
        assert not ok
        assert "fully_staffed_after_registration" in failed
        ok, failed = lifecycle.check_invariants(lifecycle.State("PRE_REGISTRATION", 5, 1))
        assert "unstaffed_before_registration" in failed

    @given(
        st.lists(
            st.one_of(
                st.just(("create", {})),
                st.builds(lambda n: ("configure", {"max_num_agent_instances": n}), st.integers(0, 8)),
                st.just(("activate_registration", {})),
                st.builds(lambda n: ("register_instances", {"count": n}), st.integers(-1, 4)),
                st.just(("deploy", {})),
                st.just(("terminate", {})),
                st.builds(lambda n: ("unbond", {"count": n}), st.integers(-1, 4)),
            ),
            max_size=30,
        )
    )
    @settings(max_examples=200, deadline=None, derandomize=True)
    def test_invariants_hold_on_every_reachable_state(self, commands):
        state = lifecycle.init_state()
        for tag, args in commands:
            result = _run(state, tag, **args)
            if result.ok:
                state = result.state
            assert lifecycle.check_invariants(state)[0]
