"""Value locators pointing into an HTTP response.

Grammar:
    code              the status code
    exact.<literal>   a fixed string
    header.<name>     a response header
    body.<gjson>      a value inside the JSON response body

Header and body locators may embed $(body...) references, which are
resolved against the triggering request body via ``with_request_body``.
"""

from dataclasses import dataclass
from typing import Any

from ..core import jsonquery
from ..core.expander import ExpansionContext, expand
from ..utils.exceptions import LocatorError
from .response import Response


@dataclass(frozen=True)
class CodeLocator:
    def locate(self, response: Response) -> str:
        return str(response.status_code)

    def __str__(self) -> str:
        return "code"


@dataclass(frozen=True)
class ExactLocator:
    value: str

    def locate(self, response: Response) -> str:
        return self.value

    def __str__(self) -> str:
        return f"exact.{self.value}"


@dataclass(frozen=True)
class HeaderLocator:
    name: str

    def locate(self, response: Response) -> str:
        return response.headers.get(self.name, "")

    def __str__(self) -> str:
        return f"header.{self.name}"


@dataclass(frozen=True)
class BodyLocator:
    path: str

    def locate(self, response: Response) -> str:
        return jsonquery.get_bytes(response.content, self.path).text()

    def __str__(self) -> str:
        return f"body.{self.path}"


Locator = CodeLocator | ExactLocator | HeaderLocator | BodyLocator


def parse(text: str) -> Locator:
    """
    Parse a locator expression.

    Raises:
        LocatorError: If the expression does not follow the grammar.
    """
    if text == "code":
        return CodeLocator()
    kind, sep, value = text.partition(".")
    if not sep:
        raise LocatorError(f"invalid locator {text!r}: expect 'code' or '<kind>.<value>'")
    if kind == "exact":
        return ExactLocator(value)
    if value == "":
        raise LocatorError(f"invalid locator {text!r}: empty {kind} value")
    if kind == "header":
        return HeaderLocator(value)
    if kind == "body":
        return BodyLocator(value)
    raise LocatorError(f"invalid locator {text!r}: unknown kind {kind!r}")


def with_request_body(locator: Locator, body: Any) -> Locator:
    """Resolve $(body...) references of a header or body locator against ``body``."""
    context = ExpansionContext(body=body)
    if isinstance(locator, HeaderLocator):
        return HeaderLocator(expand(locator.name, context))
    if isinstance(locator, BodyLocator):
        return BodyLocator(expand(locator.path, context))
    return locator
