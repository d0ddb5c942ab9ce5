"""Template expansion for paths, headers, query values and bodies.

A template may contain references of the form ``$<funcs>(<expr>)``:

- ``$(path)``           the configured phase path
- ``$(body)``           the whole context body
- ``$(body.<gjson>)``   a value inside the context body
- ``$(id)``             any other bare name from the phase context

``<funcs>`` is an optional dot-separated chain applied left to right, e.g.
``$escape(body.name)`` or ``$url_path.base(body.link)``. Values are inserted
verbatim otherwise: callers decide what needs URL encoding.

Expansion is single pass. A value that itself looks like a reference is
never expanded again.
"""

import posixpath
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote, unquote, urlsplit

import structlog

from ..utils.exceptions import UnresolvedReferenceError
from . import jsonquery

logger = structlog.get_logger(__name__)

PATTERN = re.compile(r"\$([\w\.]*)\(([\w.]+)\)")

# Characters url.PathEscape leaves alone in a single path segment
_PATH_SAFE = "!$&'()*+,;=:@~"


class _NoBody:
    def __repr__(self) -> str:
        return "<no body>"


NO_BODY: Any = _NoBody()


@dataclass
class ExpansionContext:
    """
    Values visible to a template.

    Attributes:
        path: The configured phase path, target of $(path).
        body: Decoded JSON document, target of $(body...). NO_BODY when absent.
        names: Other bare names, e.g. {"id": "posts/1"}.
    """

    path: str | None = None
    body: Any = NO_BODY
    names: Mapping[str, str] = field(default_factory=dict)


def _base(value: str) -> str:
    if value == "":
        return "."
    stripped = value.rstrip("/")
    if stripped == "":
        return "/"
    return posixpath.basename(stripped)


def _build_functions(context: ExpansionContext) -> dict[str, Callable[[str], str]]:
    def trim_path(value: str) -> str:
        if context.path is None:
            raise ValueError("trim_path requires a path in the context")
        return posixpath.relpath(value, context.path)

    return {
        "escape": lambda value: quote(value, safe=_PATH_SAFE),
        "unescape": unquote,
        "base": _base,
        "url_path": lambda value: urlsplit(value).path,
        "trim_path": trim_path,
    }


def _resolve(reference: str, expr: str, context: ExpansionContext) -> str:
    if expr == "path":
        if context.path is None:
            raise UnresolvedReferenceError(reference, "no path in this context")
        return context.path

    if expr == "body" or expr.startswith("body."):
        if context.body is NO_BODY:
            raise UnresolvedReferenceError(reference, "no body in this context")
        query = "@this" if expr == "body" else expr[len("body.") :]
        found = jsonquery.get(context.body, query)
        if not found.exists:
            raise UnresolvedReferenceError(
                reference, f"no property found at path {query!r} in the body"
            )
        return found.text()

    if expr in context.names:
        return str(context.names[expr])

    raise UnresolvedReferenceError(reference, "invalid match")


def expand(template: str, context: ExpansionContext) -> str:
    """
    Substitute every reference in ``template``.

    Args:
        template: String possibly containing $(...) references.
        context: Values visible to the template.

    Returns:
        str: The expanded string.

    Raises:
        UnresolvedReferenceError: If a reference or function cannot be resolved.
    """
    functions = _build_functions(context)

    def substitute(match: re.Match[str]) -> str:
        reference, fnames, expr = match.group(0), match.group(1), match.group(2)
        value = _resolve(reference, expr, context)
        if fnames:
            for fname in fnames.split("."):
                func = functions.get(fname)
                if func is None:
                    raise UnresolvedReferenceError(reference, f"unknown function {fname!r}")
                try:
                    value = func(value)
                except ValueError as e:
                    raise UnresolvedReferenceError(
                        reference, f"function {fname!r} failed: {e}"
                    ) from e
        return value

    # re.sub never rescans replacement text, so expanded values stay literal
    out = PATTERN.sub(substitute, template)
    if out != template:
        logger.debug("Expanded template", template=template, result=out)
    return out


def expand_json(value: Any, context: ExpansionContext) -> Any:
    """Expand every string leaf of a decoded JSON value."""
    if isinstance(value, str):
        return expand(value, context)
    if isinstance(value, list):
        return [expand_json(item, context) for item in value]
    if isinstance(value, dict):
        return {key: expand_json(item, context) for key, item in value.items()}
    return value


def expand_path(
    template: str,
    path: str | None = None,
    body: Any = NO_BODY,
    **names: str,
) -> str:
    """
    Convenience wrapper expanding a phase path template.

    Args:
        template: Path template, e.g. "$(path)/$(body.id)".
        path: Value of $(path).
        body: Value of $(body...).
        **names: Additional bare names.

    Returns:
        str: The expanded path.
    """
    return expand(template, ExpansionContext(path=path, body=body, names=names))
