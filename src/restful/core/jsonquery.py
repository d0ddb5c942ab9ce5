"""gjson-compatible path queries over decoded JSON documents.

Supported path syntax:
---------------------
- ``a.b.c``            nested keys, ``\\.`` escapes a literal dot
- ``items.0``          array index
- ``items.#``          array length (last component)
- ``items.#.name``     map the remaining path over every element
- ``items.#(id==2)``   first element matching a predicate
- ``items.#(id>1)#``   every element matching a predicate
- ``#(nets.#(=="x"))`` nested predicates, existence test when no operator
- ``na*e`` / ``n?me``  key wildcards (first matching key)
- ``@this``            the current node; also ``@reverse``, ``@keys``, ``@values``

Predicate operators: ``==`` ``=`` ``!=`` ``<`` ``<=`` ``>`` ``>=`` ``%`` (glob
like) ``!%`` (glob not like). Right-hand values are JSON literals; bare words
are compared as strings.

``set_value`` and ``delete`` accept plain key/index paths only, matching how
patches and write-only compensation address a document. Both return a new
document and leave the input untouched.
"""

import copy
import json
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any

from ..utils.exceptions import ShapingError

_TWO_CHAR_OPS = ("==", "!=", "<=", ">=", "!%")
_ONE_CHAR_OPS = ("<", ">", "%", "=")


@dataclass(frozen=True)
class Result:
    """Outcome of a path lookup."""

    exists: bool
    value: Any = None

    def text(self) -> str:
        """Render the value the way gjson's String() does."""
        return to_text(self.value) if self.exists else ""


MISSING = Result(False)


def to_text(value: Any) -> str:
    """
    Render a JSON value as text.

    Strings are returned unquoted, null becomes an empty string and
    containers are rendered as compact JSON.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return json.dumps(value)
    return json.dumps(value, separators=(",", ":"))


def split_path(path: str) -> list[str]:
    """
    Split a path into raw components.

    Separators inside predicates and quoted strings are ignored. Escape
    sequences are preserved so wildcard detection can tell ``\\*`` from ``*``.
    """
    parts: list[str] = []
    buf: list[str] = []
    depth = 0
    in_quote = False
    i = 0
    while i < len(path):
        ch = path[i]
        if ch == "\\" and i + 1 < len(path):
            buf.append(path[i : i + 2])
            i += 2
            continue
        if in_quote:
            if ch == '"':
                in_quote = False
        elif ch == '"' and depth > 0:
            in_quote = True
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch in ".|" and depth == 0:
            parts.append("".join(buf))
            buf = []
            i += 1
            continue
        buf.append(ch)
        i += 1
    parts.append("".join(buf))
    return parts


def _unescape(raw: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(raw):
        if raw[i] == "\\" and i + 1 < len(raw):
            out.append(raw[i + 1])
            i += 2
            continue
        out.append(raw[i])
        i += 1
    return "".join(out)


def _wildcard_pattern(raw: str) -> str | None:
    """Return an fnmatch pattern if the component has unescaped wildcards."""
    pattern: list[str] = []
    wildcard = False
    i = 0
    while i < len(raw):
        ch = raw[i]
        if ch == "\\" and i + 1 < len(raw):
            pattern.append(f"[{raw[i + 1]}]")
            i += 2
            continue
        if ch in "*?":
            wildcard = True
            pattern.append(ch)
        elif ch == "[":
            pattern.append("[[]")
        else:
            pattern.append(ch)
        i += 1
    return "".join(pattern) if wildcard else None


def get(doc: Any, path: str) -> Result:
    """
    Look up ``path`` in a decoded JSON document.

    Args:
        doc: Decoded JSON value.
        path: gjson-style path.

    Returns:
        Result: ``exists`` is False when nothing matched.
    """
    if path == "":
        return MISSING
    return _get(doc, split_path(path))


def get_bytes(raw: bytes | str, path: str) -> Result:
    """Decode ``raw`` as JSON and look up ``path``; undecodable input never matches."""
    try:
        doc = json.loads(raw)
    except (TypeError, ValueError):
        return MISSING
    return get(doc, path)


def _get(node: Any, comps: list[str]) -> Result:
    if not comps:
        return Result(True, node)
    head, rest = comps[0], comps[1:]

    if head.startswith("@"):
        return _apply_modifier(node, head, rest)

    if head == "#":
        if not isinstance(node, list):
            return MISSING
        if not rest:
            return Result(True, len(node))
        values = []
        for element in node:
            found = _get(element, rest)
            if found.exists:
                values.append(found.value)
        return Result(True, values)

    if head.startswith("#(") and (head.endswith(")") or head.endswith(")#")):
        if not isinstance(node, list):
            return MISSING
        all_matches = head.endswith(")#")
        inner = head[2:-2] if all_matches else head[2:-1]
        matches = [element for element in node if _matches(element, inner)]
        if all_matches:
            if not rest:
                return Result(True, matches)
            values = []
            for element in matches:
                found = _get(element, rest)
                if found.exists:
                    values.append(found.value)
            return Result(True, values)
        if not matches:
            return MISSING
        return _get(matches[0], rest)

    if isinstance(node, dict):
        pattern = _wildcard_pattern(head)
        if pattern is not None:
            for key in node:
                if fnmatchcase(key, pattern):
                    return _get(node[key], rest)
            return MISSING
        key = _unescape(head)
        if key in node:
            return _get(node[key], rest)
        return MISSING

    if isinstance(node, list):
        key = _unescape(head)
        if key.isdigit() and int(key) < len(node):
            return _get(node[int(key)], rest)
        return MISSING

    return MISSING


def _apply_modifier(node: Any, head: str, rest: list[str]) -> Result:
    name = head[1:]
    if name == "this":
        return _get(node, rest)
    if name == "reverse":
        if isinstance(node, list):
            return _get(list(reversed(node)), rest)
        if isinstance(node, dict):
            return _get(dict(reversed(list(node.items()))), rest)
        return _get(node, rest)
    if name == "keys":
        return _get(list(node.keys()), rest) if isinstance(node, dict) else MISSING
    if name == "values":
        return _get(list(node.values()), rest) if isinstance(node, dict) else MISSING
    return MISSING


# =============================================================================
# Predicates
# =============================================================================


def _split_condition(inner: str) -> tuple[str, str | None, str | None]:
    """Split a predicate into (lhs, operator, rhs); operator is None for existence tests."""
    depth = 0
    in_quote = False
    i = 0
    while i < len(inner):
        ch = inner[i]
        if ch == "\\":
            i += 2
            continue
        if in_quote:
            if ch == '"':
                in_quote = False
        elif ch == '"':
            in_quote = True
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif depth == 0:
            two = inner[i : i + 2]
            if two in _TWO_CHAR_OPS:
                return inner[:i].strip(), two, inner[i + 2 :].strip()
            if ch in _ONE_CHAR_OPS:
                op = "==" if ch == "=" else ch
                return inner[:i].strip(), op, inner[i + 1 :].strip()
        i += 1
    return inner.strip(), None, None


def _parse_literal(raw: str) -> Any:
    if raw.startswith('"'):
        try:
            return json.loads(raw)
        except ValueError:
            return raw.strip('"')
    if raw in ("true", "false", "null"):
        return json.loads(raw)
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _compare(value: Any, op: str, expected: Any) -> bool:
    if op in ("%", "!%"):
        if not isinstance(value, str) or not isinstance(expected, str):
            return op == "!%"
        like = fnmatchcase(value, expected)
        return like if op == "%" else not like

    if _is_number(value) and _is_number(expected):
        pass
    elif isinstance(value, str) and isinstance(expected, str):
        pass
    elif isinstance(value, str) and _is_number(expected):
        expected = to_text(expected)
    else:
        if op == "==":
            return value == expected
        if op == "!=":
            return value != expected
        return False

    if op == "==":
        return value == expected
    if op == "!=":
        return value != expected
    if op == "<":
        return value < expected
    if op == "<=":
        return value <= expected
    if op == ">":
        return value > expected
    if op == ">=":
        return value >= expected
    return False


def _matches(element: Any, inner: str) -> bool:
    lhs, op, rhs = _split_condition(inner)
    found = _get(element, split_path(lhs)) if lhs else Result(True, element)
    if op is None:
        return found.exists
    if not found.exists:
        return False
    return _compare(found.value, op, _parse_literal(rhs or ""))


# =============================================================================
# Mutation
# =============================================================================


def _plain_keys(path: str) -> list[str]:
    comps = split_path(path)
    for comp in comps:
        if comp.startswith("#") or comp.startswith("@") or _wildcard_pattern(comp):
            raise ShapingError("only plain key and index paths can be modified", path=path)
    return [_unescape(comp) for comp in comps]


def _is_index(key: str) -> bool:
    return key.isdigit() or key == "-1"


def set_value(doc: Any, path: str, value: Any) -> Any:
    """
    Return a copy of ``doc`` with ``value`` written at ``path``.

    Missing containers are created: an array when the next key is an index,
    an object otherwise. Index ``-1`` appends to an array.

    Raises:
        ShapingError: If the path traverses a scalar or uses query syntax.
    """
    keys = _plain_keys(path)
    root = copy.deepcopy(doc)
    if root is None:
        root = [] if _is_index(keys[0]) else {}
    node = root
    for position, key in enumerate(keys):
        last = position == len(keys) - 1
        if isinstance(node, dict):
            if last:
                node[key] = value
                break
            child = node.get(key)
            if not isinstance(child, (dict, list)):
                child = [] if _is_index(keys[position + 1]) else {}
                node[key] = child
            node = child
        elif isinstance(node, list):
            if not _is_index(key):
                raise ShapingError(f"cannot use key {key!r} on an array", path=path)
            index = len(node) if key == "-1" else int(key)
            while len(node) <= index:
                node.append(None)
            if last:
                node[index] = value
                break
            child = node[index]
            if not isinstance(child, (dict, list)):
                child = [] if _is_index(keys[position + 1]) else {}
                node[index] = child
            node = child
        else:
            raise ShapingError("cannot set a value inside a scalar", path=path)
    return root


def delete(doc: Any, path: str) -> Any:
    """Return a copy of ``doc`` with ``path`` removed; missing paths are ignored."""
    keys = _plain_keys(path)
    root = copy.deepcopy(doc)
    node = root
    for key in keys[:-1]:
        if isinstance(node, dict) and key in node:
            node = node[key]
        elif isinstance(node, list) and key.isdigit() and int(key) < len(node):
            node = node[int(key)]
        else:
            return root
    last = keys[-1]
    if isinstance(node, dict):
        node.pop(last, None)
    elif isinstance(node, list) and last.isdigit() and int(last) < len(node):
        del node[int(last)]
    return root
