"""Unit tests for impl_planner.chain."""

import logging
from unittest.mock import patch

import pytest

from impl_planner.chain import (
    BLOCKED_BY_CONDITIONS,
    FILE_NOT_FOUND,
    NOT_IN_REGISTRY,
    BuildOptions,
    ChainBuilder,
    infer_action_name,
)
from impl_planner.models import ChainStep, DescriptorError, ImplicationDescriptor
from impl_planner.registry import DiscoveryCache, InMemoryLoader, StateRegistry


def _impl(ident: str, status: str, previous: str | None = None, **extra: object) -> dict:
    entry: dict = {"testFile": f"{ident}-GO-Web-UNIT.spec.js", "actionName": f"do{ident}", "platform": "web"}
    if previous:
        entry["previousStatus"] = previous
    return {"id": ident, "meta": {"status": status, "setup": [entry], **extra.pop("meta", {})}, **extra}


def _build(builder: ChainBuilder, status: str, current: str, snapshot: dict | None = None) -> list[ChainStep]:
    descriptor = builder.load_status(status)
    assert descriptor is not None
    return builder.build(descriptor, current, status, snapshot=snapshot or {"status": current})


class TestBuildBasics:
    def test_booking_chain(self, builder_factory) -> None:
        builder = builder_factory(
            _impl("BookingRequested", "booking_requested", on={"CONFIRM": "booking_confirmed"}),
            _impl("BookingConfirmed", "booking_confirmed", "booking_requested"),
        )
        chain = _build(builder, "booking_confirmed", "initial")
        assert [s.status for s in chain] == ["booking_requested", "booking_confirmed"]
        assert [s.complete for s in chain] == [False, False]
        assert chain[-1].is_target
        assert not chain[0].is_target
        assert chain[-1].previous_status == "booking_requested"
        assert chain[0].action_name == "doBookingRequested"

    def test_current_equals_target(self, builder_factory) -> None:
        builder = builder_factory(_impl("Home", "home"))
        chain = _build(builder, "home", "home")
        assert len(chain) == 1
        assert chain[0].complete and chain[0].is_current and chain[0].is_target

    def test_back_marks_steps_before_current(self, builder_factory) -> None:
        builder = builder_factory(
            _impl("A", "a"),
            _impl("B", "b", "a"),
            _impl("C", "c", "b"),
        )
        chain = _build(builder, "c", "b")
        assert [(s.status, s.complete) for s in chain] == [("a", True), ("b", True), ("c", False)]

    def test_cycle_terminates_with_warning(self, builder_factory, caplog: pytest.LogCaptureFixture) -> None:
        builder = builder_factory(_impl("A", "a", "b"), _impl("B", "b", "a"))
        with caplog.at_level(logging.WARNING, logger="impl_planner.chain"):
            chain = _build(builder, "a", "initial")
        assert [s.status for s in chain] == ["b", "a"]
        assert "Circular dependency" in caplog.text

    def test_infer_action_name(self) -> None:
        assert infer_action_name("booking_pending") == "bookingPendingVia..."


class TestLookupMisses:
    def test_status_not_in_registry(self, builder_factory) -> None:
        builder = builder_factory(_impl("Target", "target", "ghost"))
        chain = _build(builder, "target", "initial")
        assert chain[0].status == "ghost"
        assert chain[0].action_name == NOT_IN_REGISTRY
        assert not chain[0].complete
        assert chain[-1].is_target

    def test_unregistered_requirement_sub_build(self, builder_factory) -> None:
        builder = builder_factory(_impl("Target", "target"))
        steps = builder._sub_build("ghost", "initial", set(), {}, None)
        assert [(s.status, s.action_name) for s in steps] == [("ghost", NOT_IN_REGISTRY)]
        assert steps[0].load_error == "Not in state registry"

    def test_descriptor_file_missing(self) -> None:
        target = ImplicationDescriptor.from_dict(_impl("Target", "target", "ghost"))
        registry = StateRegistry({"ghost": "GhostImplications", "target": "Target"})
        builder = ChainBuilder(registry, InMemoryLoader({"Target": target}))
        chain = builder.build(target, "initial", "target", snapshot={})
        assert chain[0].action_name == FILE_NOT_FOUND
        assert chain[0].source_class_name == "GhostImplications"
        assert chain[0].load_error

    def test_malformed_descriptor_propagates(self) -> None:
        class BrokenLoader(InMemoryLoader):
            def load(self, implication_id: str) -> ImplicationDescriptor:
                if implication_id == "Before":
                    raise DescriptorError("bad shape")
                return super().load(implication_id)

        target = ImplicationDescriptor.from_dict(_impl("Target", "target", "before"))
        registry = StateRegistry({"before": "Before", "target": "Target"})
        builder = ChainBuilder(registry, BrokenLoader({"Target": target}))
        with pytest.raises(DescriptorError):
            builder.build(target, "initial", "target", snapshot={})


class TestBlockedTransitions:
    CART = _impl("Cart", "cart", on={
        "CHECKOUT": {"target": "checkout", "requires": {"items_count": {"greaterThan": 0}}},
    })
    CHECKOUT = _impl("Checkout", "checkout", "cart")

    def test_blocked_step_emitted_after_search(self, builder_factory) -> None:
        builder = builder_factory(self.CART, self.CHECKOUT)
        with patch.object(builder, "find_alternative_path", wraps=builder.find_alternative_path) as search:
            chain = _build(builder, "checkout", "cart", {"status": "cart", "items_count": 0})
        search.assert_called()
        assert len(chain) == 1
        step = chain[0]
        assert step.blocked
        assert step.status == "checkout"
        assert step.action_name == BLOCKED_BY_CONDITIONS
        assert step.is_target
        assert "items_count" in step.blocked_reason
        assert step.blocked_transitions[0].event == "CHECKOUT"
        assert step.blocked_transitions[0].blocked_by[0].actual == 0

    def test_guard_satisfied_is_not_blocked(self, builder_factory) -> None:
        builder = builder_factory(self.CART, self.CHECKOUT)
        chain = _build(builder, "checkout", "cart", {"status": "cart", "items_count": 2})
        assert [(s.status, s.complete) for s in chain] == [("cart", True), ("checkout", False)]

    def test_alternative_path_found(self, builder_factory) -> None:
        cart = _impl("Cart", "cart", on={
            "CHECKOUT": {"target": "checkout", "requires": {"items_count": {"greaterThan": 0}}},
            "SAVE": "saved",
        })
        saved = _impl("Saved", "saved", "cart", on={"RESUME_CHECKOUT": "checkout"})
        builder = builder_factory(cart, saved, self.CHECKOUT)
        chain = _build(builder, "checkout", "cart", {"status": "cart", "items_count": 0})
        assert [s.status for s in chain] == ["saved", "checkout"]
        assert chain[0].event == "SAVE"
        assert chain[-1].is_target
        assert chain[-1].event == "RESUME_CHECKOUT"
        assert not any(s.blocked for s in chain)

    def test_unblocked_setup_entry_substituted(self, builder_factory) -> None:
        checkout = {
            "id": "Checkout",
            "meta": {"status": "checkout", "setup": [
                {"testFile": "CheckoutViaCart-CHECKOUT-Web-UNIT.spec.js", "previousStatus": "cart"},
                {"testFile": "CheckoutViaWishlist-BUY-Web-UNIT.spec.js", "previousStatus": "wishlist"},
            ]},
        }
        wishlist = _impl("Wishlist", "wishlist", on={"BUY": "checkout"})
        builder = builder_factory(self.CART, wishlist, checkout)
        chain = _build(builder, "checkout", "initial", {"status": "initial", "items_count": 0})
        assert [s.status for s in chain] == ["wishlist", "checkout"]
        assert chain[-1].previous_status == "wishlist"

    def test_valid_outgoing_ranking(self, builder_factory) -> None:
        hub = _impl("Hub", "hub", on={
            "PLAIN": "a",
            "GUARDED_OK": {"target": "b", "requires": {"ok": True}},
            "GUARDED_NO": {"target": "c", "requires": {"ok": False}},
        })
        builder = builder_factory(hub)
        events = [t.event for t in builder.get_valid_outgoing_transitions("hub", {"ok": True})]
        assert events == ["GUARDED_OK", "PLAIN"]


class TestAlternativePathSearch:
    def test_loop_back_then_forward(self, builder_factory) -> None:
        builder = builder_factory(
            _impl("Panel", "panel", on={"RESET": "reset", "FINISH": "done"}),
            _impl("Reset", "reset", "panel", on={"BACK": "panel"}),
            _impl("Done", "done", "panel"),
        )
        path = builder.find_alternative_path("panel", "done", {}, blocked_via="done")
        assert [(s.status, s.event) for s in path] == [
            ("reset", "RESET"), ("panel", "BACK"), ("done", "FINISH"),
        ]
        assert path[1].is_loop_back
        assert path[1].previous_status == "reset"
        assert path[-1].is_target
        assert path[-1].previous_status == "panel"

    def test_iteration_budget_exhausted(self, world_factory) -> None:
        registry, loader = world_factory(
            _impl("A", "a", on={"NEXT": "b"}),
            _impl("B", "b", on={"NEXT": "c"}),
            _impl("C", "c", on={"NEXT": "goal"}),
            _impl("Goal", "goal"),
        )
        assert ChainBuilder(registry, loader, max_bfs_iterations=2).find_alternative_path("a", "goal", {}) is None
        path = ChainBuilder(registry, loader).find_alternative_path("a", "goal", {})
        assert [s.status for s in path] == ["b", "c", "goal"]


class TestLoopReentry:
    def test_visited_loop_target_becomes_pass_through(self, builder_factory) -> None:
        builder = builder_factory(_impl("Panel", "panel", "pinned"), _impl("Pinned", "pinned"))
        descriptor = builder.load_status("panel")
        chain = builder.build(
            descriptor, "pinned", "panel", {"panel"}, False, {"status": "pinned"},
            BuildOptions(loop_target="panel"),
        )
        assert len(chain) == 1
        assert chain[0].status == "panel"
        assert chain[0].is_loop_prerequisite
        assert chain[0].previous_status == "pinned"
        assert not chain[0].complete

    def test_cycle_through_loop_target(self, builder_factory, caplog: pytest.LogCaptureFixture) -> None:
        builder = builder_factory(_impl("Panel", "panel", "pinned"), _impl("Pinned", "pinned", "panel"))
        descriptor = builder.load_status("panel")
        with caplog.at_level(logging.WARNING, logger="impl_planner.chain"):
            chain = builder.build(
                descriptor, "pinned", "panel", set(), True, {"status": "pinned"},
                BuildOptions(loop_target="panel"),
            )
        assert [(s.status, s.is_loop_prerequisite) for s in chain] == [
            ("panel", True), ("pinned", False), ("panel", False),
        ]
        assert chain[1].is_current
        assert chain[-1].is_target
        assert not chain[-1].complete
        assert "Circular dependency" not in caplog.text


class TestRequirementExpansion:
    def test_global_status_requirement(self, builder_factory) -> None:
        builder = builder_factory(
            _impl("LoggedIn", "logged_in"),
            _impl("Dashboard", "dashboard", meta={"requires": {"status": "logged_in"}}),
        )
        chain = _build(builder, "dashboard", "initial")
        assert [s.status for s in chain] == ["logged_in", "dashboard"]
        assert [s.is_target for s in chain] == [False, True]

    def test_entity_boolean_requirement(self, builder_factory) -> None:
        builder = builder_factory(
            _impl("BookingAccepted", "booking_accepted", meta={"entity": "booking"}),
            _impl("Review", "review_written", meta={"requires": {"booking.accepted": True}}),
        )
        snapshot = {"status": "home", "booking": {"status": "pending", "accepted": False}}
        chain = _build(builder, "review_written", "home", snapshot)
        assert [s.status for s in chain] == ["booking_accepted", "review_written"]
        assert chain[0].entity == "booking"

    def test_satisfied_entity_requirement_adds_nothing(self, builder_factory) -> None:
        builder = builder_factory(
            _impl("BookingAccepted", "booking_accepted", meta={"entity": "booking"}),
            _impl("Review", "review_written", meta={"requires": {"booking.accepted": True}}),
        )
        snapshot = {"status": "home", "booking": {"status": "accepted", "accepted": True}}
        chain = _build(builder, "review_written", "home", snapshot)
        assert [s.status for s in chain] == ["review_written"]


class TestDirectTransition:
    def test_discovery_marks_target(self) -> None:
        requested = ImplicationDescriptor.from_dict(
            _impl("Requested", "booking_requested", on={"CONFIRM": "booking_confirmed"})
        )
        confirmed = ImplicationDescriptor.from_dict(_impl("Confirmed", "booking_confirmed", "booking_requested"))
        registry = StateRegistry({"booking_requested": "Requested", "booking_confirmed": "Confirmed"})
        discovery = DiscoveryCache([{"from": "booking_requested", "to": "booking_confirmed", "event": "CONFIRM"}])
        builder = ChainBuilder(registry, InMemoryLoader({"Requested": requested, "Confirmed": confirmed}), discovery)

        chain = builder.build(confirmed, "booking_requested", "booking_confirmed", snapshot={})
        target = chain[-1]
        assert target.transition_event == "CONFIRM"
        assert target.transition_from == "booking_requested"
        assert chain[0].complete


class TestMandatoryDetours:
    def test_detour_inserted_and_returns(self, builder_factory) -> None:
        profile = _impl("Profile", "profile", on={
            "VERIFY_EMAIL": {"target": "email_verification", "requires": {"email_verified": False}},
            "OPEN_SETTINGS": "settings",
        })
        verification = {"id": "EmailVerification", "meta": {"status": "email_verification"},
                        "on": {"DONE": "profile"}}
        builder = builder_factory(profile, verification)
        chain = [
            ChainStep(status="profile", source_class_name="Profile", action_name="doProfile",
                      test_file="p.spec.js", platform="web"),
            ChainStep(status="settings", source_class_name="Settings", action_name="openSettings",
                      test_file="s.spec.js", platform="web", is_target=True),
        ]
        result = builder.insert_mandatory_detours(chain, {"email_verified": False})
        assert [s.status for s in result] == ["profile", "email_verification", "profile", "settings"]
        assert result[1].is_detour
        assert result[2].is_return_from_detour
        assert result[2].previous_status == "email_verification"

    def test_no_detour_when_requires_unmet(self, builder_factory) -> None:
        profile = _impl("Profile", "profile", on={
            "VERIFY_EMAIL": {"target": "email_verification", "requires": {"email_verified": False}},
        })
        builder = builder_factory(profile)
        chain = [ChainStep(status="profile", source_class_name="Profile", action_name="a",
                           test_file="p", platform="web")]
        assert builder.insert_mandatory_detours(chain, {"email_verified": True}) == chain


class TestPathQueries:
    def test_would_path_go_through(self, builder_factory) -> None:
        builder = builder_factory(_impl("A", "a"), _impl("B", "b", "a"), _impl("C", "c", "b"))
        assert builder.would_path_go_through("c", "a")
        assert not builder.would_path_go_through("b", "c")

    def test_state_before_blocked(self, builder_factory) -> None:
        builder = builder_factory(_impl("A", "a"), _impl("B", "b", "a"))
        assert builder.state_before_blocked("b", {}) == "a"
        assert builder.state_before_blocked("a", {}) is None
