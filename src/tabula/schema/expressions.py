"""Row-label templates and computed-field expressions.

A tiny expression language evaluated against a row's canonical values:

  Name {{Name}} ({{Age}})          template: literal text with field placeholders
  concat(First, ' ', "Last")       concat: bare field refs and quoted literals
  concat({{First}}, '-', Code)     placeholders are accepted as concat arguments

Expressions are parsed into a small AST first, so braces or quotes inside user
data are never re-interpreted. Anything the parser does not recognize evaluates
to null instead of raising.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Mapping

from tabula.schema.types import format_value

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
FIELD_REF_PATTERN = re.compile(r"^[A-Za-z_][\w .\-]*$")
CONCAT_PATTERN = re.compile(r"^concat\s*\((.*)\)$", re.IGNORECASE | re.DOTALL)


# --- AST ---


@dataclass(frozen=True)
class ExpressionNode:
    """Base class for expression nodes."""

    pass


@dataclass(frozen=True)
class LiteralNode(ExpressionNode):
    """Literal text."""

    value: str


@dataclass(frozen=True)
class FieldNode(ExpressionNode):
    """Reference to a field of the row, resolved case-insensitively."""

    field_name: str


@dataclass(frozen=True)
class NullNode(ExpressionNode):
    """An unrecognized token; always evaluates to null."""

    source: str


@dataclass(frozen=True)
class TemplateNode(ExpressionNode):
    """Literal text interleaved with placeholders."""

    parts: tuple[ExpressionNode, ...]


@dataclass(frozen=True)
class ConcatNode(ExpressionNode):
    """``concat(...)`` call."""

    arguments: tuple[ExpressionNode, ...]


# --- Parsing ---


@lru_cache(maxsize=512)
def parse_template(text: str) -> TemplateNode:
    """Parse ``{{field}}`` placeholders out of a template string."""
    parts: list[ExpressionNode] = []
    position = 0
    for match in PLACEHOLDER_PATTERN.finditer(text):
        if match.start() > position:
            parts.append(LiteralNode(text[position : match.start()]))
        parts.append(FieldNode(match.group(1)))
        position = match.end()
    if position < len(text):
        parts.append(LiteralNode(text[position:]))
    return TemplateNode(tuple(parts))


@lru_cache(maxsize=512)
def parse_expression(text: str) -> ExpressionNode:
    """Parse a computed-field expression (template or ``concat(...)``)."""
    trimmed = text.strip()
    if not trimmed:
        return NullNode(text)

    concat = CONCAT_PATTERN.match(trimmed)
    if concat:
        arguments = _split_arguments(concat.group(1))
        if arguments is None:
            return NullNode(text)
        return ConcatNode(tuple(_parse_argument(argument) for argument in arguments))

    if PLACEHOLDER_PATTERN.search(trimmed):
        return parse_template(trimmed)

    return NullNode(text)


def _split_arguments(inner: str) -> list[str] | None:
    """Split concat arguments on top-level commas; None on an unterminated quote."""
    arguments: list[str] = []
    current: list[str] = []
    quote: str | None = None
    escaped = False

    for ch in inner:
        if quote is not None:
            current.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue

        if ch in ("'", '"'):
            quote = ch
            current.append(ch)
        elif ch == ",":
            arguments.append("".join(current))
            current = []
        else:
            current.append(ch)

    if quote is not None:
        return None

    if current or arguments:
        arguments.append("".join(current))
    return arguments


def _parse_argument(argument: str) -> ExpressionNode:
    token = argument.strip()
    if not token:
        return NullNode(argument)

    if len(token) >= 2 and token[0] == token[-1] and token[0] in ("'", '"'):
        return LiteralNode(_unescape(token[1:-1]))

    placeholder = PLACEHOLDER_PATTERN.fullmatch(token)
    if placeholder:
        return FieldNode(placeholder.group(1))

    if FIELD_REF_PATTERN.match(token):
        return FieldNode(token)

    return NullNode(argument)


def _unescape(text: str) -> str:
    return re.sub(r"\\(.)", r"\1", text)


# --- Evaluation ---


def evaluate(node: ExpressionNode, values: Mapping[str, Any]) -> str | None:
    """Evaluate a node against a row's values; blank results become None."""
    folded = {key.casefold(): value for key, value in values.items()}
    result = _evaluate(node, folded)
    if result is None:
        return None
    result = result.strip()
    return result or None


def _evaluate(node: ExpressionNode, folded: Mapping[str, Any]) -> str | None:
    if isinstance(node, LiteralNode):
        return node.value

    if isinstance(node, FieldNode):
        value = folded.get(node.field_name.strip().casefold())
        return None if value is None else format_value(value)

    if isinstance(node, NullNode):
        return None

    if isinstance(node, TemplateNode):
        # missing placeholders render as empty text
        return "".join(_evaluate(part, folded) or "" for part in node.parts)

    if isinstance(node, ConcatNode):
        pieces = [_evaluate(argument, folded) for argument in node.arguments]
        return "".join(piece for piece in pieces if piece is not None)

    raise RuntimeError(f"Unknown expression node: {type(node).__name__}")


def render_template(template: str | None, values: Mapping[str, Any]) -> str | None:
    """Render a row-label template, or None when it is empty or renders blank."""
    if not template or not template.strip():
        return None
    return evaluate(parse_template(template), values)


def evaluate_expression(expression: str | None, values: Mapping[str, Any]) -> str | None:
    """Evaluate a computed-field expression, or None when unrecognized or blank."""
    if not expression or not expression.strip():
        return None
    return evaluate(parse_expression(expression), values)
