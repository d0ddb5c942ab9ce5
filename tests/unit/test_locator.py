"""Tests for response locators."""

import httpx
import pytest

from restful.api import locator as locators
from restful.api.response import Response
from restful.utils.exceptions import ConfigError, LocatorError


@pytest.fixture
def response() -> Response:
    return Response(
        status_code=202,
        content=b'{"status":"Running","items":[{"id":1,"foo":"a"},{"id":2,"foo":"b"}]}',
        headers=httpx.Headers({"Location": "/ops/99"}),
        url="https://api.example.com/posts",
        method="POST",
    )


class TestLocate:
    """Every locator kind resolves against a canned response."""

    def test_header(self, response):
        assert locators.parse("header.Location").locate(response) == "/ops/99"

    def test_header_is_case_insensitive(self, response):
        assert locators.parse("header.location").locate(response) == "/ops/99"

    def test_body(self, response):
        assert locators.parse("body.status").locate(response) == "Running"

    def test_exact(self, response):
        assert locators.parse("exact./foo/bar").locate(response) == "/foo/bar"

    def test_code(self, response):
        assert locators.parse("code").locate(response) == "202"

    def test_missing_values_are_empty(self, response):
        assert locators.parse("header.Retry-After").locate(response) == ""
        assert locators.parse("body.nope").locate(response) == ""

    def test_body_on_non_json_response(self):
        plain = Response(status_code=200, content=b"ok")
        assert locators.parse("body.status").locate(plain) == ""


class TestParse:
    @pytest.mark.parametrize("text", ["status", "body.", "header.", "cookie.x", ""])
    def test_invalid_expressions(self, text):
        with pytest.raises(LocatorError):
            locators.parse(text)

    def test_locator_error_is_config_error(self):
        with pytest.raises(ConfigError):
            locators.parse("nope")

    def test_round_trip_str(self):
        for text in ["code", "exact.x", "header.Location", "body.a.b"]:
            assert str(locators.parse(text)) == text


class TestRequestBodyInterpolation:
    def test_body_locator_resolves_against_request_body(self, response):
        locator = locators.with_request_body(
            locators.parse("body.items.#(id==$(body.id)).foo"), {"id": 2}
        )

        assert locator.locate(response) == "b"

    def test_header_locator_resolves_against_request_body(self):
        locator = locators.with_request_body(locators.parse("header.X-$(body.kind)"), {"kind": "Op"})
        assert locator == locators.HeaderLocator("X-Op")

    def test_code_and_exact_are_untouched(self):
        assert locators.with_request_body(locators.CodeLocator(), {"a": 1}) == locators.CodeLocator()
        assert locators.with_request_body(locators.ExactLocator("$(body.a)"), {"a": 1}) == (
            locators.ExactLocator("$(body.a)")
        )
