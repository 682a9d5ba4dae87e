from decimal import Decimal
from typing import Any, Dict
import math

MAX_DEPTH = 5
MAX_BREADTH = 25
# Magnitudes below this keep exponent notation, like ECMAScript number-to-string
MIN_PLAIN_MAGNITUDE = 1e-6


def float_to_text(value: float) -> str:
    """Render a float the way JSON-producing webhook senders print numbers."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    text = repr(value)
    if "e" not in text:
        return text
    if abs(value) >= MIN_PLAIN_MAGNITUDE:
        return format(Decimal(text), "f")
    mantissa, exponent = text.split("e")
    exp = int(exponent)
    return f"{mantissa}e{'+' if exp > 0 else '-'}{abs(exp)}"


def sanitize(data: Any, depth: int = 0) -> Any:
    """
    Make a JSON payload safe to embed in a Matrix event, which only allows
    integer numbers.

    Non-integer floats become their string form. Below `MAX_DEPTH` levels the
    value is returned as-is, and only the first `MAX_BREADTH` entries of a
    container are inspected; the rest are passed through untouched.
    The input is never mutated.
    """
    if isinstance(data, float):
        return int(data) if data.is_integer() else float_to_text(data)
    if depth > MAX_DEPTH or not isinstance(data, (dict, list)):
        return data
    if isinstance(data, list):
        return [d if i > MAX_BREADTH else sanitize(d, depth + 1) for i, d in enumerate(data)]
    obj: Dict[Any, Any] = dict(data)
    for breadth, (key, value) in enumerate(data.items(), start=1):
        if breadth > MAX_BREADTH:
            break
        obj[key] = sanitize(value, depth + 1)
    return obj
