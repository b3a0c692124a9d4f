"""Parsers for the two mini-languages embedded in shape tables.

Conditional-render expressions (``"facing==north&&open_bit==1"``) and ``${...}``
interpolation in texture faces, terrain texture keys and tints are both parsed
into small ASTs first, then evaluated against a :class:`~holomesh.model.Block`.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Sequence, Tuple

from .model import Block


logger = logging.getLogger(__name__)

COPIED_FLAG = "#copied_via_copy_block"
COMPARISON_OPERATORS = ("==", "!=", ">=", "<=", ">", "<")
SPECIAL_VARIABLES = ("#block_name", "#block_states", "#block_entity_data")

_MISSING = object()


class ExpressionError(ValueError):
    """Raised when an expression cannot be parsed."""


def to_js_string(value: Any) -> str:
    """Stringify a block value the way shape tables expect it to read."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(to_js_string(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    return str(value)


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip() or 0)
    except ValueError:
        return None


# --- conditionals -----------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CopiedFlag:
    negated: bool

    def evaluate(self, block: Block) -> bool:
        return block.copied_via_copy_block != self.negated


@dataclass(frozen=True, slots=True)
class Comparison:
    entity: bool
    name: str
    operator: str | None  # "&" or "??"
    operand: int | None
    comparison: str
    expected: str

    def evaluate(self, block: Block) -> bool:
        source = block.block_entity_data if self.entity else block.states
        kind = "block_entity_data" if self.entity else "states"
        if source is None:
            logger.error("No %s on block %s", kind, block.name)
            return True
        if self.operator != "??" and self.name not in source:
            logger.error("Cannot find %s %s on block %s", kind, self.name, block.name)
            return True
        actual = source.get(self.name, _MISSING)
        if self.operator == "&":
            number = _to_number(actual)
            actual = (int(number) if number is not None else 0) & int(self.operand or 0)
        elif self.operator == "??":
            if actual is _MISSING or actual is None:
                actual = self.operand
        return _compare(actual, self.comparison, self.expected)


@dataclass(frozen=True, slots=True)
class BoolOp:
    op: str  # "&&" or "||"
    operands: Tuple[Any, ...]

    def evaluate(self, block: Block) -> bool:
        if self.op == "&&":
            return all(operand.evaluate(block) for operand in self.operands)
        return any(operand.evaluate(block) for operand in self.operands)


def _compare(actual: Any, comparison: str, expected: str) -> bool:
    if actual is None:
        return comparison == "!="
    if isinstance(actual, str):
        left: Any = actual
        right: Any = expected
    else:
        left = _to_number(actual)
        right = _to_number(expected)
        if left is None or right is None:
            return comparison == "!="
    if comparison == "==":
        return left == right
    if comparison == "!=":
        return left != right
    if comparison == ">=":
        return left >= right
    if comparison == "<=":
        return left <= right
    if comparison == ">":
        return left > right
    return left < right


_TOKEN_RE = re.compile(
    r"(?P<op>\|\||&&|==|!=|>=|<=|\?\?|[><&()])|(?P<flag>!?#copied_via_copy_block)|(?P<word>-?[\w:.]+)"
)
_NAME_RE = re.compile(r"^(?:states\.|(?P<entity>entity)\.)?(?P<name>[\w:]+)$")
_INT_RE = re.compile(r"^-?\d+$")


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if m is None:
            raise ExpressionError(f"Unexpected character {text[pos]!r} in {text!r}")
        kind = m.lastgroup or "word"
        tokens.append((kind, m.group(kind)))
        pos = m.end()
    return tokens


class _ConditionParser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = _tokenize(text)
        self.i = 0

    def _peek(self) -> Tuple[str, str] | None:
        return self.tokens[self.i] if self.i < len(self.tokens) else None

    def _take(self, kind: str, value: str | None = None) -> str:
        tok = self._peek()
        if tok is None or tok[0] != kind or (value is not None and tok[1] != value):
            expected = value or kind
            found = tok[1] if tok else "end of expression"
            raise ExpressionError(f"Expected {expected} but found {found} in {self.text!r}")
        self.i += 1
        return tok[1]

    def _accept(self, value: str) -> bool:
        tok = self._peek()
        if tok is not None and tok[0] == "op" and tok[1] == value:
            self.i += 1
            return True
        return False

    def parse(self) -> Any:
        node = self._parse_or()
        if self._peek() is not None:
            raise ExpressionError(f"Trailing tokens in {self.text!r}")
        return node

    def _parse_or(self) -> Any:
        operands = [self._parse_and()]
        while self._accept("||"):
            operands.append(self._parse_and())
        return operands[0] if len(operands) == 1 else BoolOp("||", tuple(operands))

    def _parse_and(self) -> Any:
        operands = [self._parse_atom()]
        while self._accept("&&"):
            operands.append(self._parse_atom())
        return operands[0] if len(operands) == 1 else BoolOp("&&", tuple(operands))

    def _parse_atom(self) -> Any:
        tok = self._peek()
        if tok is None:
            raise ExpressionError(f"Unexpected end of {self.text!r}")
        if tok == ("op", "("):
            self.i += 1
            node = self._parse_or()
            self._take("op", ")")
            return node
        if tok[0] == "flag":
            self.i += 1
            return CopiedFlag(negated=tok[1].startswith("!"))
        return self._parse_comparison()

    def _parse_comparison(self) -> Comparison:
        term = self._take("word")
        m = _NAME_RE.match(term)
        if m is None:
            raise ExpressionError(f"Incorrectly formed block state term {term!r} in {self.text!r}")
        operator = None
        operand = None
        tok = self._peek()
        if tok is not None and tok[0] == "op" and tok[1] in ("&", "??"):
            self.i += 1
            operator = tok[1]
            raw = self._take("word")
            if not _INT_RE.match(raw):
                raise ExpressionError(f"Operand {raw!r} is not a number in {self.text!r}")
            operand = int(raw)
        tok = self._peek()
        if tok is None or tok[0] != "op" or tok[1] not in COMPARISON_OPERATORS:
            raise ExpressionError(f"Expected comparison operator after {term!r} in {self.text!r}")
        self.i += 1
        expected = self._take("word")
        return Comparison(
            entity=m.group("entity") is not None,
            name=m.group("name"),
            operator=operator,
            operand=operand,
            comparison=tok[1],
            expected=expected,
        )


@lru_cache(maxsize=None)
def parse_condition(text: str) -> Any:
    """Parse a conditional-render expression. ``&&`` binds tighter than ``||``."""

    stripped = re.sub(r"\s", "", text)
    if not stripped:
        raise ExpressionError("Empty conditional")
    return _ConditionParser(stripped).parse()


def evaluate_condition(text: str, block: Block) -> bool:
    """Evaluate ``text`` against ``block``; malformed expressions count as true."""

    try:
        node = parse_condition(text)
    except ExpressionError as exc:
        logger.error("Malformed conditional %r: %s", text, exc)
        return True
    return bool(node.evaluate(block))


# --- interpolation ----------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ArrayLookup:
    array: str
    index_var: str


@dataclass(frozen=True, slots=True)
class PropertyPath:
    root: str
    chain: Tuple[str | int, ...]
    slice_range: Tuple[int | None, int | None] | None
    default: str | None


@dataclass(frozen=True, slots=True)
class SetWholeString:
    value: str


class InterpolationError(Exception):
    """Raised while rendering a substitution; the substitution becomes empty."""


_ARRAY_RE = re.compile(r"^Array\.(\w+)\[([^\[]+)\]$")
_SET_WHOLE_RE = re.compile(r"^SET_WHOLE_STRING\(([^)]+)\)$")


class _PathParser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def _match(self, pattern: str) -> str | None:
        m = re.compile(pattern).match(self.text, self.pos)
        if m is None:
            return None
        self.pos = m.end()
        return m.group(0)

    def parse(self) -> PropertyPath:
        root = self._match(r"#block_name|#block_states|#block_entity_data")
        if root is None:
            raise ExpressionError(f"Unknown special variable in {self.text!r}")
        chain: List[str | int] = []
        slice_range = None
        while self.pos < len(self.text):
            if self._match(r"\."):
                key = self._match(r"\w+")
                if key is None:
                    raise ExpressionError(f"Expected property name in {self.text!r}")
                chain.append(key)
            elif self.text.startswith("[", self.pos):
                self.pos += 1
                first = self._match(r"-?\d+")
                if self._match(":"):
                    second = self._match(r"-?\d+")
                    if not self._match(r"\]") or (first is None and second is None):
                        raise ExpressionError(f"Malformed slice in {self.text!r}")
                    slice_range = (int(first) if first else None, int(second) if second else None)
                    break
                if first is None or not self._match(r"\]"):
                    raise ExpressionError(f"Malformed index in {self.text!r}")
                chain.append(int(first))
            else:
                break
        default = None
        if self.pos < len(self.text):
            if not self._match(r"\?\?"):
                raise ExpressionError(f"Unexpected {self.text[self.pos:]!r} in {self.text!r}")
            default = self.text[self.pos:]
            if not default:
                raise ExpressionError(f"Empty default in {self.text!r}")
            self.pos = len(self.text)
        return PropertyPath(root=root, chain=tuple(chain), slice_range=slice_range, default=default)


@lru_cache(maxsize=None)
def parse_substitution(expression: str) -> ArrayLookup | PropertyPath:
    """Parse the inside of one ``${...}`` block."""

    m = _ARRAY_RE.match(expression.strip())
    if m is not None:
        return ArrayLookup(array=m.group(1), index_var=m.group(2).strip())
    return _PathParser(re.sub(r"\s", "", expression)).parse()


def _index(value: Any, key: str | int) -> Any:
    if isinstance(value, dict):
        return value.get(str(key) if isinstance(key, int) and str(key) in value else key)
    if isinstance(value, (list, str)):
        if isinstance(key, str):
            if not key.isdigit():
                return None
            key = int(key)
        if 0 <= key < len(value):
            return value[key]
    return None


def _lookup_var(block: Block, var: str) -> Any:
    if var.startswith("entity."):
        prop = var[len("entity."):]
        if block.block_entity_data is None or prop not in block.block_entity_data:
            raise InterpolationError(f"Cannot find block entity property {prop} in {block.name}")
        return block.block_entity_data[prop]
    if block.states is None or var not in block.states:
        raise InterpolationError(f"Cannot find block state {var} in {block.name}")
    return block.states[var]


def _render_array(node: ArrayLookup, block: Block, arrays: Dict[str, Sequence[Any]] | None) -> str:
    array = (arrays or {}).get(node.array)
    if array is None:
        raise InterpolationError(f"Couldn't find array {node.array}")
    index = _lookup_var(block, node.index_var)
    if isinstance(array, dict):
        key = to_js_string(index)
        if key not in array:
            raise InterpolationError(f"Array index out of bounds: {node.array}[{key}]")
        return to_js_string(array[key])
    number = _to_number(index)
    if number is None or not number.is_integer() or not 0 <= int(number) < len(array):
        raise InterpolationError(f"Array index out of bounds: {node.array}[{to_js_string(index)}]")
    return to_js_string(array[int(number)])


def _render_path(node: PropertyPath, block: Block) -> str | SetWholeString:
    if node.root == "#block_name":
        value: Any = block.name
    elif node.root == "#block_states":
        value = block.states
    else:
        value = block.block_entity_data
    for key in node.chain:
        value = _index(value, key) if value is not None else None
    if node.slice_range is not None:
        start, stop = node.slice_range
        value = value[start:stop] if isinstance(value, (str, list)) else None
    if value is None or value == "":
        if node.default is None:
            raise InterpolationError(f"Nothing for {node.root}{''.join(f'[{k}]' for k in node.chain)} in {block.name}")
        m = _SET_WHOLE_RE.match(node.default)
        if m is not None:
            return SetWholeString(m.group(1))
        return node.default
    return to_js_string(value)


_SUBSTITUTION_RE = re.compile(r"\$\{([^}]+)\}")


def interpolate(text: str, block: Block, arrays: Dict[str, Sequence[Any]] | None = None) -> str:
    """Substitute every ``${...}`` in ``text`` with values read from ``block``.

    A malformed or unresolvable substitution is logged and replaced with an empty
    string. ``SET_WHOLE_STRING(x)`` as a default makes ``x`` the entire result.
    """

    if "${" not in text:
        return text
    out: List[str] = []
    last = 0
    for m in _SUBSTITUTION_RE.finditer(text):
        out.append(text[last:m.start()])
        last = m.end()
        try:
            node = parse_substitution(m.group(1))
            if isinstance(node, ArrayLookup):
                value = _render_array(node, block, arrays)
            else:
                value = _render_path(node, block)
        except ExpressionError as exc:
            logger.error("Wrongly formatted expression %s: %s", m.group(0), exc)
            value = ""
        except InterpolationError as exc:
            logger.error("%s (while interpolating %r)", exc, text)
            value = ""
        if isinstance(value, SetWholeString):
            return value.value
        out.append(value)
    out.append(text[last:])
    return "".join(out)
