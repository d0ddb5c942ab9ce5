"""Pure JSON shaping operations.

Every function here takes decoded JSON values (dict, list, str, int, float,
bool, None) and returns new values. Inputs are never mutated.
"""

import copy
import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from ..utils.exceptions import FilterConflictError, ShapingError
from . import attrpath, jsonquery

logger = structlog.get_logger(__name__)


def canonical_json(value: Any) -> str:
    """Serialize a JSON value with sorted keys and no insignificant whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def json_equal(lhs: Any, rhs: Any) -> bool:
    """Compare two JSON values structurally, telling ``true`` apart from ``1``."""
    return canonical_json(lhs) == canonical_json(rhs)


def decode(raw: bytes | str, what: str = "document") -> Any:
    """
    Decode JSON text.

    Raises:
        ShapingError: If the text is not valid JSON.
    """
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ShapingError(f"{what} is not valid JSON: {e}") from e


# =============================================================================
# Intersect
# =============================================================================


def intersect(base: Any, body: Any) -> Any:
    """
    Reduce ``body`` to the shape of ``base``.

    Objects keep the keys present in both, recursing on values. Arrays of
    equal length recurse element-wise, otherwise ``body`` wins. Scalars
    always take ``body``.
    """
    if isinstance(base, dict):
        if not isinstance(body, dict):
            return copy.deepcopy(body)
        return {key: intersect(value, body[key]) for key, value in base.items() if key in body}
    if isinstance(base, list):
        if isinstance(body, list) and len(base) == len(body):
            return [intersect(b, n) for b, n in zip(base, body, strict=True)]
        return copy.deepcopy(body)
    return copy.deepcopy(body)


def intersect_for_import(base: Any, body: Any, path: str = "") -> Any:
    """
    Reduce ``body`` to the shape of an import skeleton.

    Like intersect, except that arrays in the skeleton describe the shape
    of every element: a one element array is applied to each element of
    ``body`` and an empty array keeps ``body`` as is.

    Raises:
        ShapingError: If a skeleton array has more than one element.
    """
    if isinstance(base, dict):
        if not isinstance(body, dict):
            return copy.deepcopy(body)
        return {
            key: intersect_for_import(value, body[key], f"{path}.{key}" if path else key)
            for key, value in base.items()
            if key in body
        }
    if isinstance(base, list):
        if not isinstance(body, list):
            return copy.deepcopy(body)
        if len(base) == 0:
            return copy.deepcopy(body)
        if len(base) > 1:
            raise ShapingError(
                "an array in the import body must have at most one element", path=path or "."
            )
        return [
            intersect_for_import(base[0], element, f"{path}.{i}" if path else str(i))
            for i, element in enumerate(body)
        ]
    return copy.deepcopy(body)


def restore_paths(target: Any, source: Any, paths: Iterable[str]) -> Any:
    """
    Copy values found at ``paths`` in ``source`` into ``target`` when ``target`` lacks them.

    Used to keep write-only attributes, which the server never returns,
    from showing up as drift.
    """
    result = copy.deepcopy(target)
    for path in paths:
        from_source = jsonquery.get(source, path)
        if from_source.exists and not jsonquery.get(result, path).exists:
            result = jsonquery.set_value(result, path, from_source.value)
    return result


# =============================================================================
# Filter
# =============================================================================


def filter_attrs(doc: Any, attrs: Sequence[str]) -> Any:
    """
    Keep only the attribute paths listed in ``attrs``.

    Each path is filtered independently and the resulting sub-documents are
    merged. An empty ``attrs`` keeps everything.

    Raises:
        ConfigError: If an attribute path cannot be parsed.
        ShapingError: If a step does not fit the document.
        FilterConflictError: If two sub-documents disagree on a shared leaf.
    """
    if not attrs:
        return copy.deepcopy(doc)

    merged: Any = None
    first = True
    for attr in attrs:
        steps = attrpath.parse(attr)
        filtered = _filter_one(doc, [], steps)
        if first:
            merged = filtered
            first = False
        else:
            merged = _merge_filtered("", merged, filtered)
    return merged


def _filter_one(doc: Any, prefix: list[attrpath.AttrStep], steps: list[attrpath.AttrStep]) -> Any:
    if not steps:
        return copy.deepcopy(doc)

    step, remain = steps[0], steps[1:]
    prefix = prefix + [step]
    where = attrpath.render(prefix)

    if isinstance(doc, list):
        if not isinstance(step, attrpath.SplatStep):
            raise ShapingError("expect a splat step, got a value step", path=where)
        return [_filter_one(element, prefix, remain) for element in doc]

    if isinstance(doc, dict):
        if not isinstance(step, attrpath.ValueStep):
            raise ShapingError("expect a value step, got a splat step", path=where)
        if step.key not in doc:
            return {}
        return {step.key: _filter_one(doc[step.key], prefix, remain)}

    raise ShapingError(f"invalid document type {type(doc).__name__}", path=where)


def _merge_filtered(addr: str, lhs: Any, rhs: Any) -> Any:
    if isinstance(lhs, dict):
        if not isinstance(rhs, dict):
            raise FilterConflictError(f"expect {rhs!r} to be an object", path=addr or ".")
        out = {}
        for key in lhs.keys() | rhs.keys():
            if key not in rhs:
                out[key] = lhs[key]
            elif key not in lhs:
                out[key] = rhs[key]
            else:
                out[key] = _merge_filtered(f"{addr}.{key}", lhs[key], rhs[key])
        return out
    if isinstance(lhs, list):
        if not isinstance(rhs, list):
            raise FilterConflictError(f"expect {rhs!r} to be an array", path=addr or ".")
        if len(lhs) != len(rhs):
            raise FilterConflictError(
                f"length not the same {len(lhs)} != {len(rhs)}", path=addr or "."
            )
        return [
            _merge_filtered(f"{addr}.{i}", left, right)
            for i, (left, right) in enumerate(zip(lhs, rhs, strict=True))
        ]
    if not json_equal(lhs, rhs):
        raise FilterConflictError(
            f"two values are not the same: {lhs!r} != {rhs!r}", path=addr or "."
        )
    return lhs


# =============================================================================
# Patch
# =============================================================================


@dataclass(frozen=True)
class PatchItem:
    """A single body patch: set raw JSON at ``path`` or remove ``path``."""

    path: str
    raw_json: str | None = None
    removed: bool = False


def patch(base: Any, patches: Iterable[PatchItem]) -> Any:
    """
    Apply patches in order; each patch sees the effects of the earlier ones.

    Raises:
        ShapingError: If a raw value is not valid JSON or a path cannot be written.
    """
    result = copy.deepcopy(base)
    for item in patches:
        if item.removed:
            result = jsonquery.delete(result, item.path)
            continue
        if item.raw_json is None:
            raise ShapingError("patch has neither raw_json nor removed", path=item.path)
        try:
            value = json.loads(item.raw_json)
        except ValueError as e:
            raise ShapingError(f"raw_json is not valid JSON: {e}", path=item.path) from e
        result = jsonquery.set_value(result, item.path, value)
    return result


# =============================================================================
# RFC 7396 merge patch
# =============================================================================


def merge_patch_diff(old: Any, new: Any) -> Any:
    """
    Build an RFC 7396 merge patch turning ``old`` into ``new``.

    Keys present in ``old`` but absent from ``new`` become ``null``. Nested
    objects are diffed recursively and omitted when unchanged; any other
    changed value is replaced wholesale.
    """
    if not isinstance(old, dict) or not isinstance(new, dict):
        return copy.deepcopy(new)

    diff: dict[str, Any] = {}
    for key in old:
        if key not in new:
            diff[key] = None
    for key, value in new.items():
        if key not in old:
            diff[key] = copy.deepcopy(value)
            continue
        previous = old[key]
        if isinstance(previous, dict) and isinstance(value, dict):
            nested = merge_patch_diff(previous, value)
            if nested:
                diff[key] = nested
        elif not json_equal(previous, value):
            diff[key] = copy.deepcopy(value)
    return diff


def apply_merge_patch(target: Any, merge_patch: Any) -> Any:
    """Apply an RFC 7396 merge patch to ``target``."""
    if not isinstance(merge_patch, dict):
        return copy.deepcopy(merge_patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in merge_patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = apply_merge_patch(result.get(key), value)
    return result


# =============================================================================
# Ephemeral body helpers
# =============================================================================


def disjoint(lhs: Any, rhs: Any) -> bool:
    """
    Check that two documents share no JSON path.

    Objects are disjoint when every key they share is recursively disjoint.
    Any shared position holding a non-object on either side overlaps. A
    missing document is disjoint from everything.
    """
    if lhs is None or rhs is None:
        return True
    return _disjoint_value(lhs, rhs)


def _disjoint_value(lhs: Any, rhs: Any) -> bool:
    if isinstance(lhs, dict) and isinstance(rhs, dict):
        return all(_disjoint_value(lhs[key], rhs[key]) for key in lhs.keys() & rhs.keys())
    return False


def nullify(doc: Any) -> Any:
    """Replace every non-object leaf with ``null`` while keeping the object skeleton."""
    if isinstance(doc, dict):
        return {key: nullify(value) for key, value in doc.items()}
    return None


def difference(lhs: Any, rhs: Any) -> Any:
    """
    Remove from ``lhs`` every path that also exists in ``rhs``.

    Recursion stops at the first non-object on either side and removes that
    key. A nested object emptied by the removal is removed as well.
    """
    if not isinstance(lhs, dict) or not isinstance(rhs, dict):
        return copy.deepcopy(lhs)
    result, _ = _diff_map(copy.deepcopy(lhs), rhs)
    return result


def _diff_map(lhs: dict[str, Any], rhs: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    changed = False
    for key in list(lhs):
        if key not in rhs:
            continue
        value = lhs[key]
        if isinstance(value, dict) and isinstance(rhs[key], dict):
            value, nested_changed = _diff_map(value, rhs[key])
            if nested_changed and not value:
                del lhs[key]
                changed = True
            continue
        del lhs[key]
        changed = True
    return lhs, changed


def merge_bodies(body: Any, ephemeral_body: Any) -> Any:
    """Merge the ephemeral body into the body to form a request payload."""
    if ephemeral_body is None:
        return copy.deepcopy(body)
    return apply_merge_patch(body, ephemeral_body)
