from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Annotated, Union

from pydantic import BeforeValidator, PlainSerializer

WHOLE_UNIT = Decimal("1")
ZERO = Decimal("0")
MONTHS = Decimal("12")


def to_decimal(value: Any) -> Decimal:
    """Coerce user/remote input into a Decimal. None and blanks count as zero."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, bool):
        raise ValueError("boolean is not a monetary amount")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            # str() keeps floats like 0.1 from dragging binary noise into the math
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"not a number: {value!r}") from e
    # NaN and Infinity parse fine but cannot be compared or rounded
    if not result.is_finite():
        raise ValueError(f"not a finite amount: {value!r}")
    return result


def round_money(value: Decimal) -> Decimal:
    """Round half-up to whole currency units."""
    return value.quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)


def monthly(annual: Decimal) -> Decimal:
    return round_money(annual / MONTHS)


def _coerce_money(value: Any) -> Any:
    # None passes through so Optional[Money] can still mean "not given"
    return value if value is None else to_decimal(value)


def as_number(value: Decimal) -> Union[int, float]:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


# Full precision internally, plain JSON numbers on the wire
Money = Annotated[
    Decimal,
    BeforeValidator(_coerce_money),
    PlainSerializer(as_number, return_type=Union[int, float], when_used="json"),
]
