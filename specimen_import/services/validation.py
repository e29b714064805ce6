from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from decimal import Decimal
from typing import TYPE_CHECKING

"""Shared field validation primitives.

Each primitive checks one field of the current row. On failure it appends one
error-flagged ImportMessage attributed to the field's column and returns False;
on success it returns True. Blank handling is explicit: everything except
require_value passes a blank field, so optional fields compose as
``require_value(...) and max_length(...)`` only where the field is mandatory.
"""

if TYPE_CHECKING:
    from specimen_import.services.pipeline import RowContext

__all__ = [
    "FieldValidator",
    "MAX_TEXT_LENGTH",
    "require_value",
    "max_length",
    "one_of",
    "whole_number",
    "number",
    "integer_in_range",
    "scanner_safe",
]

FieldValidator = Callable[["RowContext"], bool]

MAX_TEXT_LENGTH = 255

# バーコードスキャナ / ラベル印刷で安全に扱える文字
_SCANNER_SAFE = re.compile(r"[A-Za-z0-9 _\-]")


def require_value(ctx: RowContext, field: str, message: str) -> bool:
    if ctx.text(field) == "":
        return ctx.error(field, message)
    return True


def max_length(ctx: RowContext, field: str, limit: int, message: str) -> bool:
    if len(ctx.text(field)) > limit:
        return ctx.error(field, message)
    return True


def one_of(ctx: RowContext, field: str, allowed: Iterable[str], message: str) -> bool:
    """Case-insensitive membership check."""
    text = ctx.text(field)
    if text == "":
        return True
    if text.upper() not in {a.upper() for a in allowed}:
        return ctx.error(field, message)
    return True


def whole_number(ctx: RowContext, field: str, message: str) -> bool:
    text = ctx.text(field)
    if text == "":
        return True
    value = ctx.number(field)
    if value is None or value != value.to_integral_value():
        return ctx.error(field, message)
    return True


def number(ctx: RowContext, field: str, message: str) -> bool:
    if ctx.text(field) == "":
        return True
    if ctx.number(field) is None:
        return ctx.error(field, message)
    return True


def integer_in_range(ctx: RowContext, field: str, low: int, high: int, message: str) -> bool:
    text = ctx.text(field)
    if text == "":
        return True
    value = ctx.number(field)
    if value is None or value != value.to_integral_value() or not (Decimal(low) <= value <= Decimal(high)):
        return ctx.error(field, message)
    return True


def scanner_safe(ctx: RowContext, field: str) -> bool:
    """Only letters, digits, space, '-' and '_' (reports the first offending character)."""
    for char in ctx.text(field):
        if not _SCANNER_SAFE.fullmatch(char):
            return ctx.error(field, f"Invalid character: {char}")
    return True
