"""Tests for the generated page-side JavaScript."""

import json

import pytest

from chromews import js_expressions as js


@pytest.mark.parametrize(
    "selector, expected",
    [
        ("#login", False),
        ("button.primary", False),
        ("//button[text()='Go']", True),
        ("  //div", True),
        ("(//a)[2]", True),
        ("a[href^='/docs']", False),
    ],
)
def test_is_xpath(selector, expected):
    assert js.is_xpath(selector) is expected


def test_css_selector_uses_query_selector():
    assert js.find_element_js("#q") == 'document.querySelector("#q")'


def test_xpath_selector_uses_document_evaluate():
    expr = js.find_element_js("//input[@name='q']")
    assert expr.startswith("document.evaluate(")
    assert json.dumps("//input[@name='q']") in expr
    assert "FIRST_ORDERED_NODE_TYPE" in expr


def test_selectors_are_json_escaped():
    selector = 'a[title="say \\"hi\\""]'
    expr = js.click_js(selector)
    assert json.dumps(selector) in expr


def test_element_lookup_reports_missing_element_by_selector():
    expr = js.attr_js(".nope", "href")
    assert "Element not found: " in expr
    assert json.dumps(".nope") in expr


def test_text_present_escapes_the_needle():
    expr = js.text_present_js("it's \"quoted\"\n")
    assert json.dumps("it's \"quoted\"\n") in expr
    assert ".includes(" in expr


def test_select_embeds_values_as_json_array():
    expr = js.select_js("#size", ["m", "l"])
    assert '["m", "l"]' in expr


@pytest.mark.parametrize(
    "builder", [js.extract_text_js, js.extract_html_js, js.extract_markdown_js]
)
def test_extract_without_selector_reads_whole_document(builder):
    expr = builder()
    assert "Element not found" not in expr
    assert "document." in expr


@pytest.mark.parametrize(
    "builder", [js.extract_text_js, js.extract_html_js, js.extract_markdown_js]
)
def test_extract_with_selector_scopes_to_element(builder):
    expr = builder("main article")
    assert 'document.querySelector("main article")' in expr
    assert "const root = el;" in expr
