from __future__ import annotations

import pytest

from autoplot.engine.errors import InvalidFormula
from autoplot.engine.formula import expand_wildcard, formula_to_text, normalize_formula, parse_formula


COLUMNS = ["price", "carat", "cut", "color", "clarity"]


def test_normalize_simple_formula() -> None:
    formula = normalize_formula("price ~ carat", COLUMNS)

    assert formula.response == "price"
    assert formula.explanatory == ("carat",)
    assert formula.conditioning is None
    assert formula.columns == ("price", "carat")


def test_normalize_without_response() -> None:
    formula = normalize_formula("~ cut", COLUMNS)

    assert formula.response is None
    assert formula.plotted == ("cut",)


def test_normalize_conditioning_and_composite() -> None:
    conditioned = normalize_formula("price ~ carat | cut", COLUMNS)
    combined = normalize_formula("price ~ cut * color", COLUMNS)
    interaction = normalize_formula("price ~ cut:color", COLUMNS)

    assert conditioned.conditioning == "cut"
    assert combined.composite is True
    assert combined.explanatory == ("cut", "color")
    assert interaction.composite is True


def test_backtick_names_are_unquoted() -> None:
    formula = normalize_formula("`sale price` ~ carat", ["sale price", "carat"])

    assert formula.response == "sale price"


def test_more_than_three_columns_is_rejected() -> None:
    with pytest.raises(InvalidFormula) as exc_info:
        normalize_formula("price ~ carat + cut | color", COLUMNS)

    assert exc_info.value.stage == "formula"
    assert set(exc_info.value.columns) == {"price", "carat", "cut", "color"}


def test_missing_column_is_reported() -> None:
    with pytest.raises(InvalidFormula) as exc_info:
        normalize_formula("price ~ depth", COLUMNS)

    assert exc_info.value.columns == ["depth"]
    assert exc_info.value.code == "INVALID_FORMULA"


@pytest.mark.parametrize(
    "text",
    [
        "price ~ price",
        "price + carat ~ cut",
        "price ~ carat | cut + color",
        "price ~ carat +",
        "price ~ ~ carat",
        "price ~ . + carat",
        "price ~ carat |",
        "",
    ],
)
def test_malformed_formulas(text: str) -> None:
    with pytest.raises(InvalidFormula):
        normalize_formula(text, COLUMNS)


def test_wildcard_expands_inline_when_under_cap() -> None:
    formula = normalize_formula("price ~ .", ["price", "carat", "cut"])

    assert formula.wildcard is True
    assert formula.explanatory == ("carat", "cut")


def test_wildcard_over_cap_is_rejected() -> None:
    with pytest.raises(InvalidFormula):
        normalize_formula("price ~ .", COLUMNS)


def test_expand_wildcard_yields_one_formula_per_column() -> None:
    formulas = expand_wildcard("price ~ . | cut", COLUMNS)

    assert [f.explanatory for f in formulas] == [("carat",), ("color",), ("clarity",)]
    assert all(f.response == "price" and f.conditioning == "cut" for f in formulas)
    assert all(f.wildcard for f in formulas)


def test_mapping_formula() -> None:
    request = parse_formula({"response": "price", "explanatory": ["carat", "cut"]})
    formula = normalize_formula(request, COLUMNS)

    assert formula.explanatory == ("carat", "cut")
    with pytest.raises(InvalidFormula):
        parse_formula({"response": "price", "facet": "cut"})


def test_formula_to_text() -> None:
    formula = normalize_formula("`sale price` ~ cut * color | clarity", ["sale price", "cut", "color", "clarity"])

    assert formula_to_text(formula) == "`sale price` ~ cut * color | clarity"
