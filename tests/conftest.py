"""Shared test fixtures for impl-planner."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
import yaml

from impl_planner.chain import ChainBuilder
from impl_planner.models import ImplicationDescriptor
from impl_planner.planner import TestPlanner
from impl_planner.registry import InMemoryLoader, StateRegistry


def make_world(*descriptors: dict[str, Any]) -> tuple[StateRegistry, InMemoryLoader]:
    """Registry and loader for descriptors given in their authored form."""
    loaded = [ImplicationDescriptor.from_dict(d) for d in descriptors]
    registry = StateRegistry({d.target_status: d.id for d in loaded})
    loader = InMemoryLoader({d.id: d for d in loaded})
    return registry, loader


def make_planner(*descriptors: dict[str, Any]) -> TestPlanner:
    registry, loader = make_world(*descriptors)
    return TestPlanner(registry, loader)


def make_builder(*descriptors: dict[str, Any]) -> ChainBuilder:
    registry, loader = make_world(*descriptors)
    return ChainBuilder(registry, loader)


BOOKING_REQUESTED: dict[str, Any] = {
    "id": "BookingRequestedImplications",
    "meta": {
        "status": "booking_requested",
        "platform": "web",
        "setup": [{
            "testFile": "tests/web/BookingRequestedViaSearch-REQUEST-Web-UNIT.spec.js",
            "actionName": "requestBooking",
            "platform": "web",
        }],
    },
    "on": {"CONFIRM": "booking_confirmed"},
}

BOOKING_CONFIRMED: dict[str, Any] = {
    "id": "BookingConfirmedImplications",
    "meta": {
        "status": "booking_confirmed",
        "platform": "web",
        "setup": [{
            "testFile": "tests/web/BookingConfirmedViaBookingRequested-CONFIRM-Web-UNIT.spec.js",
            "actionName": "confirmBooking",
            "previousStatus": "booking_requested",
            "platform": "web",
        }],
    },
}

CART: dict[str, Any] = {
    "id": "CartImplications",
    "meta": {
        "status": "cart",
        "setup": [{"testFile": "CartViaHome-ADD-Web-UNIT.spec.js", "actionName": "addToCart"}],
    },
    "on": {
        "CHECKOUT": {"target": "checkout", "requires": {"items_count": {"greaterThan": 0}}},
    },
}

CHECKOUT: dict[str, Any] = {
    "id": "CheckoutImplications",
    "meta": {
        "status": "checkout",
        "setup": [{
            "testFile": "CheckoutViaCart-CHECKOUT-Web-UNIT.spec.js",
            "actionName": "checkout",
            "previousStatus": "cart",
        }],
    },
}

AGENCY_MODAL: dict[str, Any] = {
    "id": "AgencyModalOpenedImplications",
    "meta": {
        "status": "agency_modal_opened",
        "setup": [{
            "testFile": "AgencyModalOpenedViaAgencyPreffered-OPEN_MODAL-Web-UNIT.spec.js",
            "actionName": "openModal",
            "previousStatus": "agency_preffered",
        }],
    },
    "on": {"SELECT_PREFERRED": "agency_preffered"},
}

AGENCY_PREFFERED: dict[str, Any] = {
    "id": "AgencyPrefferedImplications",
    "meta": {
        "status": "agency_preffered",
        "setup": [{
            "testFile": "AgencyPrefferedViaAgencyModalOpened-SELECT_PREFERRED-Web-UNIT.spec.js",
            "actionName": "selectPreferred",
            "previousStatus": "agency_modal_opened",
        }],
    },
    "on": {"OPEN_MODAL": "agency_modal_opened"},
}


@pytest.fixture
def planner_factory() -> Any:
    return make_planner


@pytest.fixture
def builder_factory() -> Any:
    return make_builder


@pytest.fixture
def world_factory() -> Any:
    return make_world


@pytest.fixture
def booking_planner() -> TestPlanner:
    return make_planner(BOOKING_REQUESTED, BOOKING_CONFIRMED)


@pytest.fixture
def cart_planner() -> TestPlanner:
    return make_planner(CART, CHECKOUT)


@pytest.fixture
def agency_planner() -> TestPlanner:
    return make_planner(AGENCY_MODAL, AGENCY_PREFFERED)


@pytest.fixture
def initialized_project(tmp_path: Path) -> Path:
    """A project with config, registry, descriptor files and a snapshot."""
    planner_dir = tmp_path / ".impl-planner"
    planner_dir.mkdir()
    impl_dir = tmp_path / "tests" / "implications"
    impl_dir.mkdir(parents=True)
    data_dir = tmp_path / "tests" / "data"
    data_dir.mkdir(parents=True)

    config = {
        "version": "0.1.0",
        "registry_path": "tests/implications/.state-registry.json",
        "implications_dirs": ["tests/implications"],
        "data_path": "tests/data/shared.json",
    }
    (planner_dir / "config.json").write_text(json.dumps(config, indent=2))

    registry = {
        "booking_requested": "BookingRequestedImplications",
        "booking_confirmed": "BookingConfirmedImplications",
    }
    (impl_dir / ".state-registry.json").write_text(json.dumps(registry, indent=2))
    (impl_dir / "BookingRequestedImplications.yaml").write_text(yaml.safe_dump(BOOKING_REQUESTED))
    (impl_dir / "web").mkdir()
    (impl_dir / "web" / "BookingConfirmedImplications.yaml").write_text(
        yaml.safe_dump(BOOKING_CONFIRMED)
    )
    (data_dir / "shared.json").write_text(json.dumps({"status": "initial"}))
    return tmp_path
