"""포뮬러 정규화.

- "y ~ x1 + x2 | z", "y ~ x1 * x2", "y ~ ." 형태의 문자열이나 dict를 받는다.
- 역할(response / explanatory / conditioning)별 컬럼 목록으로 검증 후 반환한다.
- 참조 컬럼은 최대 3개 (엔진의 하드 캡).
"""
from __future__ import annotations

import re
from typing import Any, Iterable, List, Mapping, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict

from autoplot.engine.errors import InvalidFormula
from autoplot.models.plot_spec import Formula

MAX_DISTINCT_COLUMNS = 3
MAX_EXPLANATORY = 2
_WILDCARD = "."
_TOKEN_RE = re.compile(r"`[^`]*`|[~+*:|]|[^~+*:|`]+")
_COMBINE_OPS = ("*", ":")


class FormulaRequest(BaseModel):
    """Raw role assignment before validation against the dataset."""

    model_config = ConfigDict(frozen=True)

    response: Tuple[str, ...] = ()
    explanatory: Tuple[str, ...] = ()
    conditioning: Tuple[str, ...] = ()
    wildcard: bool = False
    composite: bool = False


FormulaInput = Union[str, Mapping[str, Any], FormulaRequest, Formula]


def _tokenize(text: str) -> List[str]:
    tokens: List[str] = []
    for raw in _TOKEN_RE.findall(text):
        token = raw.strip()
        if token:
            tokens.append(token)
    return tokens


def _unquote(name: str) -> str:
    if len(name) >= 2 and name.startswith("`") and name.endswith("`"):
        return name[1:-1]
    return name


# 입력: 토큰 목록 (한 역할 구간)
# 출력: 항(term) 목록, 각 항은 이름 목록
# "a + b * c" -> [["a"], ["b", "c"]]
def _parse_terms(tokens: Sequence[str], text: str) -> List[List[str]]:
    terms: List[List[str]] = []
    current: List[str] = []
    expect_name = True
    for token in tokens:
        if expect_name:
            if token in ("+", "|", "~") or token in _COMBINE_OPS:
                raise InvalidFormula(f"malformed formula near '{token}': {text}", stage="formula")
            current.append(_unquote(token))
            expect_name = False
            continue
        if token == "+":
            terms.append(current)
            current = []
        elif token in _COMBINE_OPS:
            pass
        else:
            raise InvalidFormula(f"malformed formula near '{token}': {text}", stage="formula")
        expect_name = True
    if current:
        terms.append(current)
    if tokens and expect_name:
        raise InvalidFormula(f"formula ends with an operator: {text}", stage="formula")
    return terms


def _split_on(tokens: Sequence[str], sep: str) -> List[List[str]]:
    parts: List[List[str]] = [[]]
    for token in tokens:
        if token == sep:
            parts.append([])
        else:
            parts[-1].append(token)
    return parts


def _parse_text(text: str) -> FormulaRequest:
    tokens = _tokenize(text)
    sides = _split_on(tokens, "~")
    if len(sides) > 2:
        raise InvalidFormula(f"formula has more than one '~': {text}", stage="formula")
    lhs, rhs = (sides[0], sides[1]) if len(sides) == 2 else ([], sides[0])

    rhs_parts = _split_on(rhs, "|")
    if len(rhs_parts) > 2:
        raise InvalidFormula(f"formula has more than one '|': {text}", stage="formula")
    main = rhs_parts[0]
    cond = rhs_parts[1] if len(rhs_parts) == 2 else []
    if len(rhs_parts) == 2 and not cond:
        raise InvalidFormula(f"conditioning term is empty: {text}", stage="formula")

    response_terms = _parse_terms(lhs, text)
    main_terms = _parse_terms(main, text)
    cond_terms = _parse_terms(cond, text)

    if any(len(term) > 1 for term in response_terms):
        raise InvalidFormula(f"response cannot combine columns: {text}", stage="formula")

    wildcard = any(_WILDCARD in term for term in main_terms)
    if wildcard and any(len(term) > 1 for term in main_terms):
        raise InvalidFormula(f"wildcard cannot be part of a combined term: {text}", stage="formula")
    composite = any(len(term) > 1 for term in main_terms)
    explanatory = [name for term in main_terms for name in term if name != _WILDCARD]
    if wildcard and main_terms.count([_WILDCARD]) > 1:
        raise InvalidFormula(f"wildcard given more than once: {text}", stage="formula")

    return FormulaRequest(
        response=tuple(name for term in response_terms for name in term),
        explanatory=tuple(explanatory),
        conditioning=tuple(name for term in cond_terms for name in term),
        wildcard=wildcard,
        composite=composite,
    )


def _as_names(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    return tuple(str(v) for v in value)


def parse_formula(spec: FormulaInput) -> FormulaRequest:
    """Parse a formula string / mapping into raw role terms."""
    if isinstance(spec, FormulaRequest):
        return spec
    if isinstance(spec, Formula):
        return FormulaRequest(
            response=_as_names(spec.response),
            explanatory=tuple(spec.explanatory),
            conditioning=_as_names(spec.conditioning),
            composite=spec.composite,
        )
    if isinstance(spec, str):
        if not spec.strip():
            raise InvalidFormula("formula is empty", stage="formula")
        return _parse_text(spec)
    if isinstance(spec, Mapping):
        unknown = set(spec) - {"response", "explanatory", "conditioning", "composite"}
        if unknown:
            raise InvalidFormula(
                f"unknown formula keys: {', '.join(sorted(map(str, unknown)))}",
                stage="formula",
            )
        explanatory = _as_names(spec.get("explanatory"))
        wildcard = _WILDCARD in explanatory
        return FormulaRequest(
            response=_as_names(spec.get("response")),
            explanatory=tuple(name for name in explanatory if name != _WILDCARD),
            conditioning=_as_names(spec.get("conditioning")),
            wildcard=wildcard,
            composite=bool(spec.get("composite", False)),
        )
    raise InvalidFormula(f"unsupported formula type: {type(spec).__name__}", stage="formula")


def _check_columns(names: Iterable[str], columns: Sequence[str]) -> None:
    available = set(columns)
    missing = [name for name in names if name not in available]
    if missing:
        raise InvalidFormula(
            f"columns not found in dataset: {', '.join(missing)}",
            stage="formula",
            columns=missing,
        )


def _check_roles(request: FormulaRequest) -> None:
    if len(request.response) > 1:
        raise InvalidFormula(
            "at most one response column is allowed",
            stage="formula",
            columns=request.response,
        )
    if len(request.conditioning) > 1:
        raise InvalidFormula(
            "at most one conditioning column is allowed",
            stage="formula",
            columns=request.conditioning,
        )
    if request.wildcard and request.explanatory:
        raise InvalidFormula(
            "wildcard cannot be combined with explicit explanatory columns",
            stage="formula",
            columns=request.explanatory,
        )
    referenced = list(request.response) + list(request.explanatory) + list(request.conditioning)
    duplicated = sorted({name for name in referenced if referenced.count(name) > 1})
    if duplicated:
        raise InvalidFormula(
            "a column can play only one role",
            stage="formula",
            columns=duplicated,
        )


def _referenced(request: FormulaRequest) -> List[str]:
    return list(request.response) + list(request.explanatory) + list(request.conditioning)


def _build_formula(
    request: FormulaRequest,
    explanatory: Sequence[str],
    *,
    wildcard: bool,
) -> Formula:
    names = list(request.response) + list(explanatory) + list(request.conditioning)
    if not names:
        raise InvalidFormula("formula references no variables", stage="formula")
    if len(set(names)) > MAX_DISTINCT_COLUMNS:
        raise InvalidFormula(
            f"formula references {len(set(names))} distinct columns; at most {MAX_DISTINCT_COLUMNS} are supported",
            stage="formula",
            columns=names,
        )
    if len(explanatory) > MAX_EXPLANATORY:
        raise InvalidFormula(
            f"at most {MAX_EXPLANATORY} explanatory columns are allowed",
            stage="formula",
            columns=explanatory,
        )
    if not request.response and not explanatory:
        raise InvalidFormula(
            "formula needs a response or an explanatory column",
            stage="formula",
            columns=request.conditioning,
        )
    composite = bool(request.composite)
    if composite and len(explanatory) != 2:
        raise InvalidFormula(
            "a combined term needs exactly two explanatory columns",
            stage="formula",
            columns=explanatory,
        )
    return Formula(
        response=request.response[0] if request.response else None,
        explanatory=tuple(explanatory),
        conditioning=request.conditioning[0] if request.conditioning else None,
        composite=composite,
        wildcard=wildcard,
    )


# 입력: formula(문자열/dict/요청), 데이터셋 컬럼 목록
# 출력: 검증된 Formula
# 잘못된 역할 구성/없는 컬럼/3개 초과 참조는 InvalidFormula
def normalize_formula(spec: FormulaInput, columns: Sequence[str]) -> Formula:
    request = parse_formula(spec)
    _check_roles(request)
    _check_columns(_referenced(request), columns)

    explanatory: Sequence[str] = request.explanatory
    if request.wildcard:
        taken = set(_referenced(request))
        explanatory = [c for c in columns if c not in taken]
    return _build_formula(request, explanatory, wildcard=request.wildcard)


def expand_wildcard(spec: FormulaInput, columns: Sequence[str]) -> List[Formula]:
    """Split an overview request into one single-explanatory formula per candidate column."""
    request = parse_formula(spec)
    _check_roles(request)
    _check_columns(_referenced(request), columns)

    if request.wildcard:
        taken = set(_referenced(request))
        candidates = [c for c in columns if c not in taken]
    else:
        candidates = list(request.explanatory)

    single = request.model_copy(update={"explanatory": (), "wildcard": False, "composite": False})
    formulas: List[Formula] = []
    for column in candidates:
        formulas.append(_build_formula(single, [column], wildcard=request.wildcard))
    if not formulas and request.response:
        formulas.append(_build_formula(single, [], wildcard=False))
    return formulas


def formula_to_text(formula: Formula) -> str:
    """Render a Formula back into the "y ~ a + b | z" notation."""

    def _quote(name: str) -> str:
        return name if re.fullmatch(r"[A-Za-z_][A-Za-z0-9_.]*", name) else f"`{name}`"

    joiner = " * " if formula.composite else " + "
    rhs = joiner.join(_quote(n) for n in formula.explanatory)
    text = f"{_quote(formula.response)} ~ {rhs}" if formula.response else f"~ {rhs}"
    if formula.conditioning:
        text = f"{text} | {_quote(formula.conditioning)}"
    return text.strip()
