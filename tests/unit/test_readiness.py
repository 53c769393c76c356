"""Unit tests for impl_planner.readiness."""

from impl_planner.models import ChainStep, ImplicationDescriptor, MissingField
from impl_planner.readiness import (
    detect_cross_platform,
    find_missing_fields,
    find_next_step,
    group_by_platform,
    is_entity_field,
    is_ready,
    normalize_platform,
    split_missing_fields,
)
from impl_planner.registry import StateRegistry


def _step(status: str, platform: str = "web", **flags: object) -> ChainStep:
    return ChainStep(
        status=status,
        source_class_name=f"{status}Impl",
        action_name=f"reach_{status}",
        test_file=f"{status}.spec.js",
        platform=platform,
        **flags,
    )


class TestIsReady:
    def test_all_complete(self) -> None:
        chain = [_step("a", complete=True), _step("b", complete=True, is_target=True)]
        assert is_ready(chain, "b")

    def test_only_target_incomplete(self) -> None:
        chain = [_step("a", complete=True), _step("b", is_target=True)]
        assert is_ready(chain, "a")

    def test_prerequisite_incomplete(self) -> None:
        chain = [_step("a"), _step("b", is_target=True)]
        assert not is_ready(chain, "initial")

    def test_blocked_never_ready(self) -> None:
        chain = [_step("b", is_target=True, blocked=True)]
        assert not is_ready(chain, "a")

    def test_direct_transition_requires_source(self) -> None:
        target = _step("b", is_target=True, transition_event="GO", transition_from="a")
        assert is_ready([_step("a", complete=True), target], "a")
        assert not is_ready([_step("a", complete=True), target], "z")

    def test_loop_ready_only_from_previous_status(self) -> None:
        chain = [
            _step("modal", complete=True),
            _step("preferred", complete=True),
            _step("modal", is_target=True, previous_status="preferred"),
        ]
        assert is_ready(chain, "preferred", is_loop_transition=True)
        assert not is_ready(chain, "modal", is_loop_transition=True)


class TestNextStep:
    def test_first_incomplete_non_target(self) -> None:
        chain = [_step("a", complete=True), _step("b"), _step("c"), _step("d", is_target=True)]
        assert find_next_step(chain).status == "b"

    def test_none_when_only_target_left(self) -> None:
        assert find_next_step([_step("a", complete=True), _step("b", is_target=True)]) is None


class TestMissingFields:
    def _descriptor(self, requires: dict, required_fields: list | None = None) -> ImplicationDescriptor:
        meta: dict = {"status": "target", "requires": requires}
        if required_fields:
            meta["requiredFields"] = required_fields
        return ImplicationDescriptor.from_dict({"id": "Target", "meta": meta})

    def test_unmet_requirement_reported(self) -> None:
        missing = find_missing_fields(self._descriptor({"plan": "pro"}), {"plan": "free"})
        assert missing == [MissingField(field="plan", required="pro", actual="free")]

    def test_previous_status_and_registered_status_skipped(self) -> None:
        registry = StateRegistry({"logged_in": "LoggedIn"})
        descriptor = self._descriptor({"previousStatus": "x", "status": "logged_in"})
        assert find_missing_fields(descriptor, {"status": "initial"}, registry) == []

    def test_negated_requirement(self) -> None:
        descriptor = self._descriptor({"!blocked": True})
        missing = find_missing_fields(descriptor, {"blocked": True})
        assert missing[0].field == "blocked"
        assert missing[0].required == "NOT True"
        assert find_missing_fields(descriptor, {"blocked": False}) == []

    def test_required_fields_must_be_defined(self) -> None:
        descriptor = self._descriptor({}, ["user.email"])
        missing = find_missing_fields(descriptor, {"user": {}})
        assert missing == [MissingField(field="user.email", required="defined", actual="missing")]
        assert find_missing_fields(descriptor, {"user": {"email": "a@b.c"}}) == []

    def test_split_entity_and_regular(self) -> None:
        registry = StateRegistry({"booking_accepted": "BookingAccepted"})
        missing = [
            MissingField(field="booking.status", required="accepted", actual="pending"),
            MissingField(field="booking.accepted", required=True, actual=False),
            MissingField(field="user.name", required="Ana", actual=None),
        ]
        entity, regular = split_missing_fields(missing, registry)
        assert [m.field for m in entity] == ["booking.status", "booking.accepted"]
        assert [m.field for m in regular] == ["user.name"]

    def test_boolean_field_without_registry_is_regular(self) -> None:
        assert not is_entity_field(MissingField(field="booking.accepted", required=True, actual=False))


class TestPlatforms:
    def test_normalize(self) -> None:
        assert normalize_platform("Playwright") == "web"
        assert normalize_platform("CLUB") == "clubApp"
        assert normalize_platform("android") == "android"
        assert normalize_platform(None) == "unknown"
        assert normalize_platform("ios", {"ios": "mobile"}) == "mobile"

    def test_group_by_platform(self) -> None:
        chain = [
            _step("a", "web", complete=True),
            _step("b", "cms", complete=True),
            _step("c", "dancer"),
            _step("d", "web", is_target=True),
        ]
        segments = group_by_platform(chain)
        assert [(s.platform, len(s.steps), s.complete) for s in segments] == [
            ("web", 2, True),
            ("dancer", 1, False),
            ("web", 1, False),
        ]

    def test_complete_segment_reopened_for_unmet_entity_requirement(self) -> None:
        descriptor = ImplicationDescriptor.from_dict({
            "id": "Review", "meta": {"status": "review", "requires": {"booking.accepted": True}},
        })
        chain = [_step("booking_accepted", "dancer", complete=True), _step("review", "web", is_target=True)]
        snapshot = {"booking": {"accepted": False}}
        segments = group_by_platform(chain, snapshot, descriptor)
        assert not segments[0].complete

        segments = group_by_platform(chain, {"booking": {"accepted": True}}, descriptor)
        assert segments[0].complete

    def test_detect_cross_platform(self) -> None:
        chain = [
            _step("a", "web", complete=True),
            _step("b", "dancer"),
            _step("c", "playwright"),
            _step("d", "dancer", is_target=True),
        ]
        assert [s.status for s in detect_cross_platform(chain, "web")] == ["b"]
        assert detect_cross_platform(chain, "dancer") == [chain[2]]
