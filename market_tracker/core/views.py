"""Read-side computations the dashboard renders from live stats and candles."""

from typing import Optional


def price_change(last_known_price: float, opening_price: float) -> float:
    return last_known_price - opening_price


def price_change_percent(last_known_price: float, opening_price: float) -> Optional[float]:
    """Percent move since the day's open; None when there is no opening price to divide by."""
    if opening_price == 0:
        return None
    return (last_known_price - opening_price) / opening_price * 100


def utc_to_local_epoch_ms(epoch_ms: int, tz_offset_minutes: int) -> int:
    """
    Shift a UTC epoch so a chart axis shows the viewer's wall-clock time.
    `tz_offset_minutes` follows JavaScript's getTimezoneOffset (UTC minus local,
    positive west of Greenwich).
    """
    return epoch_ms - tz_offset_minutes * 60_000
