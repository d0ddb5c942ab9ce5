"""Attribute paths used by output filtering.

An attribute path is a dot-separated list of steps. A step is either a
literal object key or ``#``, a splat over every element of an array. A
backslash escapes the next character so keys may contain ``.``, ``#`` or
``\\``.
"""

from dataclasses import dataclass

from ..utils.exceptions import ConfigError


@dataclass(frozen=True)
class ValueStep:
    key: str


@dataclass(frozen=True)
class SplatStep:
    pass


AttrStep = ValueStep | SplatStep


def parse(text: str) -> list[AttrStep]:
    """
    Parse an attribute path.

    Args:
        text: Path such as ``properties.rules.#.name``.

    Returns:
        list[AttrStep]: The parsed steps.

    Raises:
        ConfigError: On empty input, empty steps, or a dangling escape.
    """
    if text == "":
        raise ConfigError("empty attribute path")

    steps: list[AttrStep] = []
    buf: list[str] = []
    literal = False
    escape = False
    for ch in text:
        if escape:
            buf.append(ch)
            literal = True
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == ".":
            steps.append(_make_step(text, buf, literal))
            buf = []
            literal = False
            continue
        buf.append(ch)
    if escape:
        raise ConfigError(f"attribute path {text!r} ends with a dangling escape")
    steps.append(_make_step(text, buf, literal))
    return steps


def _make_step(text: str, buf: list[str], literal: bool) -> AttrStep:
    value = "".join(buf)
    if value == "":
        raise ConfigError(f"attribute path {text!r} contains an empty step")
    if value == "#" and not literal:
        return SplatStep()
    return ValueStep(value)


def render(steps: list[AttrStep]) -> str:
    """Render steps back into path syntax, escaping special characters."""
    out = []
    for step in steps:
        if isinstance(step, SplatStep):
            out.append("#")
            continue
        out.append("".join(f"\\{c}" if c in ".#\\" else c for c in step.key))
    return ".".join(out)
