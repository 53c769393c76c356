"""Condition evaluation for transition guards and setup-entry requirements.

Two authored forms are supported and share one set of predicate semantics:

* Block trees: ``{"mode": "all"|"any", "blocks": [...]}`` where each block
  is a ``condition-check`` (a list of ``{field, operator, value, valueType}``
  checks) or a ``custom-code`` block naming a registered predicate.
* Legacy ``requires`` maps: ``{field: expected}`` where ``expected`` is a
  literal or a structured predicate such as ``{"exists": True}`` or
  ``{"greaterThan": 0}``; a leading ``!`` on the field negates it.

Missing data never raises: absent fields resolve to ``None`` and every
operator has a defined result for it.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Mapping
from typing import Any

from impl_planner.models import CheckResult, ConditionResult

logger = logging.getLogger(__name__)

Predicate = Callable[[Mapping[str, Any], Mapping[str, Any]], Any]

OPERATORS = (
    "equals",
    "notEquals",
    "greaterThan",
    "greaterThanOrEqual",
    "lessThan",
    "lessThanOrEqual",
    "contains",
    "notContains",
    "startsWith",
    "endsWith",
    "matches",
    "in",
    "notIn",
    "exists",
    "notExists",
    "truthy",
    "falsy",
)

_TEMPLATE_RE = re.compile(r"^\{\{|\}\}$")
_CONTEXT_PREFIX = "ctx.data."

_predicates: dict[str, Predicate] = {}


def register_predicate(name: str, fn: Predicate | None = None) -> Any:
    """Register a named predicate for ``custom-code`` blocks.

    Usable directly (``register_predicate("x", fn)``) or as a decorator.
    The predicate receives ``(snapshot, stored_vars)``.
    """
    def decorator(func: Predicate) -> Predicate:
        _predicates[name] = func
        return func

    if fn is not None:
        return decorator(fn)
    return decorator


def unregister_predicate(name: str) -> None:
    _predicates.pop(name, None)


def resolve_path(obj: Any, path: str) -> Any:
    """Resolve a dotted path against nested mappings, ``None`` when absent."""
    current = obj
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(part)
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
    return current


def strip_template(text: str) -> str:
    return _TEMPLATE_RE.sub("", text).strip()


def resolve_field_value(
    field_path: str | None,
    snapshot: Mapping[str, Any] | None,
    stored_vars: Mapping[str, Any] | None = None,
) -> Any:
    """Look up a field in stored variables first, then in the snapshot."""
    if not field_path:
        return None
    field_path = strip_template(field_path)

    if stored_vars:
        name, _, rest = field_path.partition(".")
        if stored_vars.get(name) is not None:
            if not rest:
                return stored_vars[name]
            return resolve_path(stored_vars[name], rest)

    return resolve_path(snapshot, field_path)


def _to_number(value: Any) -> float:
    if value is None:
        return math.nan
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        if not value.strip():
            return 0.0
        try:
            return float(value)
        except ValueError:
            return math.nan
    return math.nan


def _to_text(value: Any) -> str:
    if not value:
        return ""
    if isinstance(value, bool):
        return "true"
    return str(value)


def strict_equals(actual: Any, expected: Any) -> bool:
    """Equality that never treats booleans as the numbers 0 and 1."""
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    return actual == expected


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple, set)):
        return expected in actual
    return _to_text(expected) in _to_text(actual)


def _matches(actual: Any, expected: Any) -> bool:
    try:
        return re.search(expected, _to_text(actual)) is not None
    except (re.error, TypeError):
        return False


def _is_collection(value: Any) -> bool:
    return isinstance(value, (list, tuple, set))


_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": strict_equals,
    "notEquals": lambda a, e: not strict_equals(a, e),
    "greaterThan": lambda a, e: _to_number(a) > _to_number(e),
    "greaterThanOrEqual": lambda a, e: _to_number(a) >= _to_number(e),
    "lessThan": lambda a, e: _to_number(a) < _to_number(e),
    "lessThanOrEqual": lambda a, e: _to_number(a) <= _to_number(e),
    "contains": _contains,
    "notContains": lambda a, e: not _contains(a, e),
    "startsWith": lambda a, e: _to_text(a).startswith(_to_text(e)),
    "endsWith": lambda a, e: _to_text(a).endswith(_to_text(e)),
    "matches": _matches,
    "in": lambda a, e: _is_collection(e) and a in e,
    "notIn": lambda a, e: _is_collection(e) and a not in e,
    "exists": lambda a, e: a is not None,
    "notExists": lambda a, e: a is None,
    "truthy": lambda a, e: bool(a),
    "falsy": lambda a, e: not a,
}


def evaluate_operator(actual: Any, operator: str, expected: Any) -> bool:
    """Apply a single comparison operator."""
    compare = _COMPARATORS.get(operator)
    if compare is None:
        logger.warning("Unknown operator: %s", operator)
        return False
    return compare(actual, expected)


def _enabled(items: list[Any]) -> list[Any]:
    return [i for i in items if not (isinstance(i, Mapping) and i.get("enabled") is False)]


def _combine(mode: str, results: list[bool]) -> bool:
    if mode == "any":
        return any(results)
    return all(results)


def evaluate_conditions(
    conditions: Mapping[str, Any] | None,
    snapshot: Mapping[str, Any] | None,
    stored_vars: Mapping[str, Any] | None = None,
    predicates: Mapping[str, Predicate] | None = None,
) -> ConditionResult:
    """Evaluate a block tree. An empty or fully disabled tree is met."""
    if not conditions or not conditions.get("blocks"):
        return ConditionResult(met=True)

    blocks = _enabled(list(conditions["blocks"]))
    if not blocks:
        return ConditionResult(met=True)

    results = [
        evaluate_block(block, snapshot, stored_vars or {}, predicates)
        for block in blocks
    ]
    met = _combine(conditions.get("mode", "all"), [r.met for r in results])
    return ConditionResult(met=met, blocks=results)


def evaluate_block(
    block: Mapping[str, Any],
    snapshot: Mapping[str, Any] | None,
    stored_vars: Mapping[str, Any],
    predicates: Mapping[str, Predicate] | None = None,
) -> ConditionResult:
    block_type = block.get("type")
    if block_type == "condition-check":
        return _evaluate_check_block(block, snapshot, stored_vars)
    if block_type == "custom-code":
        return _evaluate_custom_block(block, snapshot, stored_vars, predicates)
    return ConditionResult(met=True, kind="unknown")


def _evaluate_check_block(
    block: Mapping[str, Any],
    snapshot: Mapping[str, Any] | None,
    stored_vars: Mapping[str, Any],
) -> ConditionResult:
    data = block.get("data") or {}
    checks = _enabled(list(data.get("checks") or block.get("checks") or []))
    if not checks:
        return ConditionResult(met=True, kind="condition-check")

    results: list[CheckResult] = []
    for check in checks:
        field_path = check.get("field")
        operator = check.get("operator", "equals")
        expected = check.get("value")
        if check.get("valueType") == "variable" and isinstance(expected, str):
            expected = resolve_field_value(expected, snapshot, stored_vars)
        actual = resolve_field_value(field_path, snapshot, stored_vars)
        results.append(CheckResult(
            field=field_path or "",
            operator=operator,
            expected=expected,
            actual=actual,
            met=evaluate_operator(actual, operator, expected),
        ))

    met = _combine(block.get("mode", "all"), [r.met for r in results])
    return ConditionResult(met=met, kind="condition-check", checks=results)


def _evaluate_custom_block(
    block: Mapping[str, Any],
    snapshot: Mapping[str, Any] | None,
    stored_vars: Mapping[str, Any],
    predicates: Mapping[str, Predicate] | None,
) -> ConditionResult:
    registry = _predicates if predicates is None else predicates
    name = block.get("predicate") or block.get("code") or ""
    fn = registry.get(name.strip()) if isinstance(name, str) else None
    if fn is None:
        logger.warning("Custom predicate not registered: %r", name)
        return ConditionResult(met=False, kind="custom-code", error=f"unknown predicate {name!r}")
    try:
        result = fn(snapshot or {}, stored_vars)
    except Exception as e:  # noqa: BLE001
        logger.warning("Custom predicate %r failed: %s", name, e)
        return ConditionResult(met=False, kind="custom-code", error=str(e))
    return ConditionResult(met=bool(result), kind="custom-code")


def _resolve_reference(value: Any, snapshot: Mapping[str, Any] | None) -> Any:
    if isinstance(value, str) and value.startswith(_CONTEXT_PREFIX):
        return resolve_path(snapshot, value[len(_CONTEXT_PREFIX):])
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def check_requirement(
    expected: Any, actual: Any, snapshot: Mapping[str, Any] | None = None
) -> bool:
    """Evaluate one legacy ``requires`` value against an actual value."""
    if not isinstance(expected, Mapping):
        return strict_equals(actual, expected)

    if expected.get("exists") is True:
        return actual is not None
    if expected.get("exists") is False:
        return actual is None
    if "contains" in expected:
        needle = _resolve_reference(expected["contains"], snapshot)
        return isinstance(actual, (list, tuple)) and needle in actual
    if "notContains" in expected:
        needle = _resolve_reference(expected["notContains"], snapshot)
        return not isinstance(actual, (list, tuple)) or needle not in actual
    if "greaterThan" in expected:
        return _is_number(actual) and _to_number(actual) > _to_number(expected["greaterThan"])
    if "lessThan" in expected:
        return _is_number(actual) and _to_number(actual) < _to_number(expected["lessThan"])
    if "matches" in expected:
        if not isinstance(actual, str):
            return False
        try:
            return re.search(expected["matches"], actual) is not None
        except (re.error, TypeError):
            return False
    if isinstance(expected.get("oneOf"), list):
        return actual in expected["oneOf"]
    return actual == expected


def visited_statuses(snapshot: Mapping[str, Any] | None) -> list[str]:
    """Statuses recorded in the snapshot's change log, oldest first."""
    statuses: list[str] = []
    for entry in (snapshot or {}).get("_changeLog") or []:
        status = entry.get("status") or (entry.get("delta") or {}).get("status")
        if status:
            statuses.append(status)
    return statuses


def check_requires(
    requires: Mapping[str, Any] | None, snapshot: Mapping[str, Any] | None
) -> ConditionResult:
    """Evaluate a legacy ``requires`` map, collecting per-field results."""
    if not requires or snapshot is None:
        return ConditionResult(met=True, kind="requires")

    checks: list[CheckResult] = []
    for field_name, expected in requires.items():
        if field_name == "previousStatus":
            seen = visited_statuses(snapshot)
            checks.append(CheckResult(field_name, expected, seen, expected in seen))
        elif field_name.startswith("!"):
            clean = field_name[1:]
            actual = resolve_path(snapshot, clean)
            checks.append(CheckResult(
                clean, expected, actual, not check_requirement(expected, actual, snapshot)
            ))
        else:
            actual = resolve_path(snapshot, field_name)
            checks.append(CheckResult(
                field_name, expected, actual, check_requirement(expected, actual, snapshot)
            ))

    return ConditionResult(met=all(c.met for c in checks), kind="requires", checks=checks)


def requires_met(
    requires: Mapping[str, Any] | None, snapshot: Mapping[str, Any] | None
) -> bool:
    """True when every data requirement holds; ``previousStatus`` is structural."""
    if not requires or snapshot is None:
        return False
    data_requires = {k: v for k, v in requires.items() if k != "previousStatus"}
    return check_requires(data_requires, snapshot).met


def evaluate_guard(
    conditions: Mapping[str, Any] | None,
    requires: Mapping[str, Any] | None,
    snapshot: Mapping[str, Any] | None,
    stored_vars: Mapping[str, Any] | None = None,
) -> ConditionResult:
    """Block conditions take precedence over legacy ``requires``."""
    if conditions and conditions.get("blocks"):
        return evaluate_conditions(conditions, snapshot, stored_vars)
    return check_requires(requires, snapshot)


def evaluate_step_conditions(
    conditions: Mapping[str, Any] | None,
    snapshot: Mapping[str, Any] | None,
    stored_vars: Mapping[str, Any] | None = None,
) -> bool:
    """Decide whether a conditional test step should run."""
    if not conditions or not conditions.get("blocks"):
        return True
    result = evaluate_conditions(conditions, snapshot, stored_vars)
    if not result.met:
        for check in result.failed_checks():
            logger.info(
                "Step condition not met: %s %s %r (actual: %r)",
                check.field, check.operator, check.expected, check.actual,
            )
    return result.met
