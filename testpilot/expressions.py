"""``${...}`` template parsing and evaluation.

Templates are strings, or dicts/lists whose string leaves may contain
``${path}`` placeholders.  A string made of exactly one placeholder resolves to
the raw value it points at; any other string has its placeholders interpolated.

The expression grammar is deliberately small::

    expression := operand (OP operand)?
    operand    := path | literal
    path       := ("input" | "steps") accessor*
    accessor   := "." NAME | "." INT | "[" (INT | STRING) "]"
                | ".filter(" NAME "=>" NAME ("." NAME)* OP literal ")"
    OP         := "===" | "!==" | ">" | ">=" | "<" | "<="
    literal    := NUMBER | STRING | true | false | null | undefined

``.length`` on a list or string yields its size.  Paths that do not exist
resolve to ``None`` instead of raising; callers that need a value decide what
``None`` means.  Each distinct expression text is parsed once and cached.
"""

from __future__ import annotations

import ast
import json
import operator
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Optional, Union

from .errors import ExpressionError

ROOTS = ("input", "steps")
COMPARISON_OPS = ("===", "!==", ">", ">=", "<", "<=")
_KEYWORDS = {"true": True, "false": False, "null": None, "undefined": None}

_TOKEN_RE = re.compile(
    r"""
    (?P<op>===|!==|>=|<=|=>|>|<)
    |(?P<number>-?\d+(?:\.\d+)?)
    |(?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    |(?P<name>[A-Za-z_$][\w$-]*)
    |(?P<punct>[.\[\]()])
    """,
    re.VERBOSE,
)
_INDEX_RE = re.compile(r"\d+")


# ----------------------------------------------------------------------
# AST
@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Member:
    name: str


@dataclass(frozen=True)
class Index:
    key: Union[int, str]


@dataclass(frozen=True)
class Filter:
    field: tuple[str, ...]
    op: str
    value: Any


Accessor = Union[Member, Index, Filter]


@dataclass(frozen=True)
class Path:
    root: Optional[str]
    accessors: tuple[Accessor, ...] = ()


@dataclass(frozen=True)
class Compare:
    left: "Node"
    op: str
    right: "Node"


Node = Union[Literal, Path, Compare]


# ----------------------------------------------------------------------
# Tokenizer / parser
@dataclass(frozen=True)
class _Token:
    kind: str
    value: str


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(text):
        if text[pos].isspace():
            pos += 1
            continue
        # ``items.0.name`` must not lex ``0.`` as a float
        if tokens and tokens[-1].value == "." and text[pos].isdigit():
            match = _INDEX_RE.match(text, pos)
            tokens.append(_Token("number", match.group()))
            pos = match.end()
            continue
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise ExpressionError(
                f"Unexpected character {text[pos]!r} in expression '{text}'"
            )
        tokens.append(_Token(match.lastgroup, match.group()))
        pos = match.end()
    tokens.append(_Token("end", ""))
    return tokens


class _Parser:
    def __init__(self, text: str, subject: bool = False) -> None:
        self.text = text
        self.subject = subject
        self.tokens = _tokenize(text)
        self.pos = 0

    # -- token helpers -------------------------------------------------
    def _peek(self, offset: int = 0) -> _Token:
        return self.tokens[min(self.pos + offset, len(self.tokens) - 1)]

    def _next(self) -> _Token:
        token = self._peek()
        self.pos += 1
        return token

    def _accept(self, value: str) -> bool:
        if self._peek().value == value and self._peek().kind != "string":
            self.pos += 1
            return True
        return False

    def _expect(self, value: str) -> None:
        if not self._accept(value):
            self._fail(f"expected '{value}'")

    def _fail(self, reason: str) -> None:
        token = self._peek()
        found = token.value or "end of expression"
        raise ExpressionError(f"Invalid expression '{self.text}': {reason}, found '{found}'")

    # -- grammar -------------------------------------------------------
    def parse(self) -> Node:
        if self.subject:
            node = self._subject_comparison()
        else:
            node = self._comparison()
        if self._peek().kind != "end":
            self._fail("unexpected trailing input")
        return node

    def _comparison(self) -> Node:
        left = self._operand()
        if self._peek().value in COMPARISON_OPS:
            op = self._next().value
            return Compare(left, op, self._operand())
        return left

    def _subject_comparison(self) -> Node:
        # predicates such as ``length > 0`` apply to an implicit value
        accessors: list[Accessor] = []
        if self._peek().kind == "name" and self._peek().value not in _KEYWORDS:
            accessors.append(Member(self._next().value))
            accessors.extend(self._accessors())
        left = Path(None, tuple(accessors))
        if self._peek().value in COMPARISON_OPS:
            op = self._next().value
            return Compare(left, op, Literal(self._literal()))
        if self._peek().kind != "end":
            self._fail("expected a comparison operator")
        return left

    def _operand(self) -> Node:
        token = self._peek()
        if token.kind in ("number", "string") or token.value in _KEYWORDS:
            return Literal(self._literal())
        if token.kind == "name":
            return self._path()
        self._fail("expected a path or literal")

    def _literal(self) -> Any:
        token = self._next()
        if token.kind == "number":
            return float(token.value) if "." in token.value else int(token.value)
        if token.kind == "string":
            return ast.literal_eval(token.value)
        if token.kind == "name" and token.value in _KEYWORDS:
            return _KEYWORDS[token.value]
        self.pos -= 1
        self._fail("expected a literal")

    def _path(self) -> Path:
        root = self._next().value
        if root not in ROOTS:
            raise ExpressionError(
                f"Invalid expression '{self.text}': paths must start with "
                f"'input' or 'steps', found '{root}'"
            )
        return Path(root, tuple(self._accessors()))

    def _accessors(self) -> list[Accessor]:
        accessors: list[Accessor] = []
        while True:
            if self._accept("."):
                token = self._next()
                if token.kind == "name" and token.value == "filter" and self._peek().value == "(":
                    accessors.append(self._filter())
                elif token.kind == "name":
                    accessors.append(Member(token.value))
                elif token.kind == "number":
                    accessors.append(Index(int(token.value)))
                else:
                    self.pos -= 1
                    self._fail("expected a member name")
            elif self._accept("["):
                token = self._next()
                if token.kind == "number" and "." not in token.value:
                    accessors.append(Index(int(token.value)))
                elif token.kind == "string":
                    accessors.append(Index(ast.literal_eval(token.value)))
                else:
                    self.pos -= 1
                    self._fail("expected an index or quoted key")
                self._expect("]")
            else:
                return accessors

    def _filter(self) -> Filter:
        self._expect("(")
        param = self._next()
        if param.kind != "name":
            self.pos -= 1
            self._fail("expected a parameter name")
        self._expect("=>")
        if self._next().value != param.value:
            self.pos -= 1
            self._fail(f"predicate must start with '{param.value}'")
        field: list[str] = []
        while self._accept("."):
            token = self._next()
            if token.kind not in ("name", "number"):
                self.pos -= 1
                self._fail("expected a member name")
            field.append(token.value)
        if self._peek().value not in COMPARISON_OPS:
            self._fail("expected a comparison operator")
        op = self._next().value
        value = self._literal()
        self._expect(")")
        return Filter(tuple(field), op, value)


@lru_cache(maxsize=2048)
def parse_expression(text: str) -> Node:
    """Parse the body of a ``${...}`` placeholder."""
    return _Parser(text).parse()


@lru_cache(maxsize=512)
def parse_predicate(text: str) -> Node:
    """Parse a rule condition such as ``length > 0`` over an implicit value."""
    return _Parser(text, subject=True).parse()


_NON_EMPTY = Compare(Path(None, (Member("length"),)), ">", Literal(0))


# ----------------------------------------------------------------------
# Templates
@dataclass(frozen=True)
class CompiledTemplate:
    parts: tuple[Union[str, Node], ...]

    @property
    def exact(self) -> bool:
        return len(self.parts) == 1 and not isinstance(self.parts[0], str)

    def nodes(self) -> list[Node]:
        return [part for part in self.parts if not isinstance(part, str)]


def _split_placeholders(text: str) -> list[tuple[bool, str]]:
    pieces: list[tuple[bool, str]] = []
    pos = 0
    while True:
        start = text.find("${", pos)
        if start == -1:
            if pos < len(text):
                pieces.append((False, text[pos:]))
            return pieces
        if start > pos:
            pieces.append((False, text[pos:start]))
        end = start + 2
        quote: Optional[str] = None
        while end < len(text):
            char = text[end]
            if quote:
                if char == "\\":
                    end += 1
                elif char == quote:
                    quote = None
            elif char in "\"'":
                quote = char
            elif char == "}":
                break
            end += 1
        else:
            raise ExpressionError(f"Unterminated placeholder in template '{text}'")
        pieces.append((True, text[start + 2 : end]))
        pos = end + 1


@lru_cache(maxsize=2048)
def compile_template(text: str) -> CompiledTemplate:
    parts: list[Union[str, Node]] = []
    for is_expression, piece in _split_placeholders(text):
        parts.append(parse_expression(piece.strip()) if is_expression else piece)
    return CompiledTemplate(tuple(parts))


# ----------------------------------------------------------------------
# Evaluation
def _strict_equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


_ORDERING: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}


def compare(left: Any, op: str, right: Any) -> bool:
    """Apply a comparison operator; incompatible operands compare ``False``."""
    if op == "===":
        return _strict_equal(left, right)
    if op == "!==":
        return not _strict_equal(left, right)
    if left is None or right is None:
        return False
    try:
        return bool(_ORDERING[op](left, right))
    except TypeError:
        return False


def _member(value: Any, name: str) -> Any:
    if isinstance(value, Mapping):
        if name in value:
            return value[name]
        if name == "length":
            return len(value)
        return None
    if isinstance(value, (str, list, tuple)):
        if name == "length":
            return len(value)
        if name.isdigit() and not isinstance(value, str):
            return _index(value, int(name))
    return None


def _index(value: Any, key: Union[int, str]) -> Any:
    if isinstance(value, Mapping):
        return value.get(key, value.get(str(key)))
    if isinstance(value, Sequence) and not isinstance(value, str) and isinstance(key, int):
        if -len(value) <= key < len(value):
            return value[key]
    return None


def _walk(value: Any, accessors: tuple[Accessor, ...]) -> Any:
    for accessor in accessors:
        if value is None:
            return None
        if isinstance(accessor, Member):
            value = _member(value, accessor.name)
        elif isinstance(accessor, Index):
            value = _index(value, accessor.key)
        else:
            if not isinstance(value, (list, tuple)):
                return None
            value = [
                item
                for item in value
                if compare(_walk(item, tuple(Member(n) for n in accessor.field)), accessor.op, accessor.value)
            ]
    return value


def _root(context: Any, name: str) -> Any:
    if isinstance(context, Mapping):
        return context.get(name)
    return getattr(context, name, None)


def evaluate(node: Node, context: Any, subject: Any = None) -> Any:
    """Evaluate an expression AST against ``context`` (or ``subject`` for predicates)."""
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Path):
        base = subject if node.root is None else _root(context, node.root)
        return _walk(base, node.accessors)
    return compare(evaluate(node.left, context, subject), node.op, evaluate(node.right, context, subject))


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def _step_references(node: Node) -> set[str]:
    if isinstance(node, Compare):
        return _step_references(node.left) | _step_references(node.right)
    if isinstance(node, Path) and node.root == "steps" and node.accessors:
        head = node.accessors[0]
        if isinstance(head, Member):
            return {head.name}
        if isinstance(head, Index) and isinstance(head.key, str):
            return {head.key}
    return set()


class ExpressionResolver:
    """Resolve templates against an execution context.

    ``context`` is anything exposing ``input`` and ``steps`` either as
    attributes or as mapping keys; ``steps`` maps step ids to ``{"output": ...}``.
    """

    def resolve(self, template: Any, context: Any) -> Any:
        if isinstance(template, str):
            return self._resolve_string(template, context)
        if isinstance(template, Mapping):
            return {key: self.resolve(value, context) for key, value in template.items()}
        if isinstance(template, (list, tuple)):
            return [self.resolve(value, context) for value in template]
        return template

    def _resolve_string(self, text: str, context: Any) -> Any:
        if "${" not in text:
            return text
        compiled = compile_template(text)
        if compiled.exact:
            return evaluate(compiled.parts[0], context)
        return "".join(
            part if isinstance(part, str) else _render(evaluate(part, context))
            for part in compiled.parts
        )

    def evaluate_expression(self, text: str, context: Any) -> Any:
        """Resolve ``text`` as a template, or as a bare expression when it has no ``${``."""
        if "${" in text:
            return self._resolve_string(text, context)
        return evaluate(parse_expression(text.strip()), context)

    def evaluate_condition(self, text: str, context: Any) -> bool:
        """Truthiness of a condition; unresolved paths are falsy."""
        return bool(self.evaluate_expression(text, context))

    def evaluate_predicate(self, condition: str, value: Any) -> bool:
        """Check a rule condition (``length > 0``, ``=== "ok"``) against ``value``.

        Conditions that are not comparisons (``exists``, ``present``), and
        ``length > 0`` on a value without a length, test the truthiness of
        ``value`` instead.
        """
        text = condition.strip()
        if not text:
            return bool(value)
        try:
            node = parse_predicate(text)
        except ExpressionError:
            return bool(value)
        if not isinstance(node, Compare):
            return bool(value)
        if node == _NON_EMPTY and not isinstance(value, (str, list, tuple, Mapping)):
            return bool(value)
        return bool(evaluate(node, None, subject=value))

    @staticmethod
    def referenced_steps(template: Any, bare: bool = False) -> set[str]:
        """Step ids referenced through ``steps.<id>`` anywhere in ``template``.

        With ``bare=True`` a string without ``${`` is read as an expression
        (condition and rule-field style) rather than as literal text.
        """
        refs: set[str] = set()
        if isinstance(template, str):
            if "${" in template:
                for node in compile_template(template).nodes():
                    refs |= _step_references(node)
            elif bare and template.strip():
                refs |= _step_references(parse_expression(template.strip()))
        elif isinstance(template, Mapping):
            for value in template.values():
                refs |= ExpressionResolver.referenced_steps(value)
        elif isinstance(template, (list, tuple)):
            for value in template:
                refs |= ExpressionResolver.referenced_steps(value)
        return refs
