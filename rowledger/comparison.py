"""Typed loose comparison for configured values.

Rules applied by :func:`loose_equals`:

* two numbers (``int``/``float``, booleans excluded) compare numerically;
* a number and a numeric string compare numerically, so ``"86" == 86``;
* two numeric strings compare numerically, so ``"86" == "86.0"``;
* a string that does not parse as a number never equals a number;
* everything else falls back to ``==`` (``None`` only equals ``None``).

:func:`canonical_form` gives the representative used wherever loosely equal
values must share one identity, such as identifier map keys.
"""

from collections.abc import Iterable
from decimal import Decimal, InvalidOperation


SCALAR_TYPES = (str, int, float, bool, type(None))


def is_scalar(value: object) -> bool:
    return isinstance(value, SCALAR_TYPES)


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def as_number(value: object) -> Decimal | None:
    """Return the numeric form of a number or numeric string, else None."""
    if _is_number(value):
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = Decimal(text)
        except InvalidOperation:
            return None
        # Decimal accepts "nan" and "infinity" which are not numeric strings here.
        if not number.is_finite():
            return None
        return number
    return None


def loose_equals(left: object, right: object) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return left == right

    numeric_pair = (_is_number(left) or isinstance(left, str)) and (_is_number(right) or isinstance(right, str))
    if numeric_pair and not (isinstance(left, str) and isinstance(right, str) and left == right):
        left_number = as_number(left)
        right_number = as_number(right)
        if left_number is not None and right_number is not None:
            return left_number == right_number
        if _is_number(left) or _is_number(right):
            return False

    return left == right


def loose_contains(values: Iterable[object], candidate: object) -> bool:
    return any(loose_equals(candidate, value) for value in values)


def canonical_form(value: object) -> object:
    """Map every value in a loose-equality class onto one representative.

    Numbers and numeric strings become their shortest decimal string, so
    ``1``, ``1.0`` and ``"1"`` all give ``"1"``; other values are returned as is.
    """
    number = as_number(value)
    if number is None or not number.is_finite():
        return value
    if number == number.to_integral_value():
        return str(int(number))
    return str(number.normalize())
