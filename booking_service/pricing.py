from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from .errors import ConfigurationError

SECONDS_PER_HOUR = 60 * 60
SECONDS_PER_DAY = 24 * SECONDS_PER_HOUR


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def _has_rate(rate) -> bool:
    return rate is not None and Decimal(rate) > 0


def compute_cost(vehicle, start: datetime, end: datetime) -> Decimal:
    """
    Flat rate times the number of started billing units. A daily rate wins
    over an hourly one; any partial day (or hour) is billed in full.
    """
    span = end - start
    # exact span in milliseconds, then rounded up to whole units
    span_ms = span.days * SECONDS_PER_DAY * 1000 + span.seconds * 1000 + span.microseconds // 1000

    if _has_rate(vehicle.daily_rate):
        units = _ceil_div(span_ms, SECONDS_PER_DAY * 1000)
        return Decimal(units) * Decimal(vehicle.daily_rate)

    if _has_rate(vehicle.hourly_rate):
        units = _ceil_div(span_ms, SECONDS_PER_HOUR * 1000)
        return Decimal(units) * Decimal(vehicle.hourly_rate)

    raise ConfigurationError(
        "Vehicle has no daily or hourly rate defined for booking calculation."
    )


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
