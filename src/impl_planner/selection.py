"""Setup-entry and transition selection.

When an implication offers several ways to reach its status, or a source
implication offers several transitions into the same target, these
functions decide which one applies to the current snapshot.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from pathlib import PurePath
from typing import Any

from impl_planner.conditions import evaluate_guard, requires_met, resolve_path
from impl_planner.models import ImplicationDescriptor, SetupEntry, TransitionConfig

logger = logging.getLogger(__name__)

# Tokens used to split an all-caps event such as REQUESTBOOKING.
KNOWN_EVENT_WORDS = sorted(
    [
        "REQUEST", "BOOKING", "CREATE", "DELETE", "UPDATE", "VIEW", "SELECT",
        "CLICK", "SUBMIT", "CANCEL", "UNDO", "SAVE", "LOAD", "GET", "SET",
        "ADD", "REMOVE", "OPEN", "CLOSE", "SIGN", "LOG", "SEARCH", "FILTER",
        "SORT", "EDIT", "CONFIRM", "ACCEPT", "REJECT", "APPROVE", "DENY",
        "FLIGHT", "AGENCY", "DETAILS", "RESULTS", "FARES", "LOGIN", "LOGOUT",
        "IN", "OUT", "UP", "DOWN", "ON", "OFF", "ALL", "NONE", "INVITE",
        "DANCER", "CLUB", "MANAGER", "PUBLISH", "DRAFT",
    ],
    key=len,
    reverse=True,
)

_CAMEL_RE = re.compile(r"([a-z])([A-Z])")


def _basename(path: str) -> str:
    return PurePath(path).name


def _normalize_token(text: str) -> str:
    return text.replace("_", "").upper()


def events_match(event: str | None, other: str | None) -> bool:
    """Compare event names ignoring case and underscores (UP_GRADE == UPGRADE)."""
    if not event or not other:
        return False
    return _normalize_token(event) == _normalize_token(other)


def _match_event(entries: list[SetupEntry], event: str | None) -> SetupEntry | None:
    if not event:
        return None
    token = _normalize_token(event)
    for entry in entries:
        if entry.test_file and token in _normalize_token(entry.test_file):
            return entry
    return None


def _log_unmatched(entries: tuple[SetupEntry, ...], snapshot: Mapping[str, Any] | None) -> None:
    logger.warning("No setup entry has satisfied requires; falling back")
    for entry in entries:
        for field_name, expected in (entry.requires or {}).items():
            if field_name == "previousStatus":
                continue
            logger.warning(
                "  %s: %s expected %r, actual %r",
                entry.test_file or entry.action_name or "<entry>",
                field_name,
                expected,
                resolve_path(snapshot, field_name.lstrip("!")),
            )


def select_setup_entry(
    descriptor: ImplicationDescriptor,
    snapshot: Mapping[str, Any] | None = None,
    current_test_file: str | None = None,
    explicit_event: str | None = None,
) -> SetupEntry | None:
    """Pick the setup entry that applies to the snapshot.

    Order: exact test-file basename, then entries whose ``requires`` all hold
    (event hint breaks ties), then entries with no ``requires``, then the
    legacy event-substring match, then the first entry.
    """
    entries = descriptor.setup_entries
    if not entries:
        return None

    if current_test_file:
        wanted = _basename(current_test_file)
        for entry in entries:
            if entry.test_file and _basename(entry.test_file) == wanted:
                return entry

    matching = [e for e in entries if e.requires and requires_met(e.requires, snapshot)]
    if len(matching) == 1:
        return matching[0]
    if matching:
        return _match_event(matching, explicit_event) or matching[0]

    defaults = [e for e in entries if not e.requires]
    if defaults:
        return _match_event(defaults, explicit_event) or defaults[0]

    _log_unmatched(entries, snapshot)
    return _match_event(list(entries), explicit_event) or entries[0]


def get_previous_status(
    descriptor: ImplicationDescriptor,
    snapshot: Mapping[str, Any] | None = None,
    current_test_file: str | None = None,
    explicit_event: str | None = None,
) -> str | None:
    """Previous status from the selected setup entry, else ``requires.previousStatus``."""
    entry = select_setup_entry(descriptor, snapshot, current_test_file, explicit_event)
    if entry and entry.previous_status:
        return entry.previous_status
    fallback = descriptor.requires.get("previousStatus")
    return fallback if isinstance(fallback, str) else None


def select_transition(
    source: ImplicationDescriptor,
    target_status: str,
    current_platform: str | None = None,
    explicit_event: str | None = None,
    prefer_same_platform: bool = True,
    snapshot: Mapping[str, Any] | None = None,
) -> TransitionConfig | None:
    """Choose which of ``source``'s transitions to use to reach ``target_status``."""
    candidates = source.transitions_to(target_status)
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0]

    logger.debug(
        "Multiple paths to %s: %s", target_status, ", ".join(c.event for c in candidates)
    )

    if explicit_event:
        for candidate in candidates:
            if events_match(candidate.event, explicit_event):
                return candidate

    for candidate in candidates:
        if candidate.has_guard and evaluate_guard(
            candidate.conditions, candidate.requires, snapshot
        ).met:
            return candidate

    for candidate in candidates:
        if not candidate.has_guard:
            return candidate

    for candidate in candidates:
        if candidate.is_default:
            return candidate

    if prefer_same_platform and current_platform:
        for candidate in candidates:
            if current_platform in candidate.platforms:
                return candidate

    logger.warning(
        "Arbitrary transition choice for %s -> %s: using %s",
        source.target_status, target_status, candidates[0].event,
    )
    return candidates[0]


def extract_event_from_filename(test_file: str | None) -> str | None:
    """Derive an event name from ``XViaY-EVENT-Platform-UNIT.spec.js``."""
    if not test_file:
        return None
    parts = _basename(test_file).split("-")
    if len(parts) < 4 or not parts[1]:
        return None
    event = parts[1]

    if "_" in event:
        return event.upper()

    if event == event.upper():
        words: list[str] = []
        remaining = event
        while remaining:
            for word in KNOWN_EVENT_WORDS:
                if remaining.startswith(word):
                    words.append(word)
                    remaining = remaining[len(word):]
                    break
            else:
                words.append(remaining)
                break
        return "_".join(words)

    return _CAMEL_RE.sub(r"\1_\2", event).upper()
