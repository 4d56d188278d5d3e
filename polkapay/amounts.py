"""Conversion helpers between human decimal amounts and integer base units."""

from __future__ import annotations

from dataclasses import dataclass

ASSET_DECIMALS = 6
NATIVE_DECIMALS = 10
DEFAULT_FEE_DISPLAY_PRECISION = 4


def to_base_units(amount: str, decimals: int) -> int:
    """Convert a decimal string such as ``"5.25"`` into base units.

    Missing parts are treated as zero (``".5"``, ``"5."`` and ``""`` all
    decode). Fractional digits beyond ``decimals`` are truncated, never
    rounded, so a signed transfer can never exceed what the caller typed.
    Only ASCII digits are accepted on either side of the point.
    """

    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")

    text = amount.strip()
    sign = ""
    if text.startswith(("+", "-")):
        sign, text = text[0], text[1:]
    integer, _, fraction = text.partition(".")
    for part in (integer, fraction):
        if part and not (part.isascii() and part.isdigit()):
            raise ValueError(f"Invalid decimal amount: {amount!r}")

    normalized = fraction.ljust(decimals, "0")[:decimals]
    return int(sign + (integer or "0") + normalized)


def to_decimal_string(base_units: int, decimals: int) -> str:
    """Render ``base_units`` with exactly ``decimals`` fractional digits."""

    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    if base_units < 0:
        raise ValueError(f"base unit amounts are non-negative, got {base_units}")

    digits = str(int(base_units))
    if decimals == 0:
        return digits
    digits = digits.rjust(decimals + 1, "0")
    return f"{digits[:-decimals]}.{digits[-decimals:]}"


def format_fee(
    base_units: int,
    decimals: int = NATIVE_DECIMALS,
    precision: int = DEFAULT_FEE_DISPLAY_PRECISION,
) -> str:
    """Format a native-asset fee for display, truncated to ``precision`` digits."""

    rendered = to_decimal_string(base_units, decimals)
    if decimals == 0 or precision >= decimals:
        return rendered
    integer, fraction = rendered.split(".")
    if precision <= 0:
        return integer
    return f"{integer}.{fraction[:precision]}"


@dataclass(frozen=True)
class AmountCodec:
    """Amount codec bound to one asset's decimal count.

    The transferred asset and the native fee asset use different precisions;
    keeping one codec per asset means no call site has to remember which
    literal applies.
    """

    decimals: int
    symbol: str

    def to_base_units(self, amount: str) -> int:
        return to_base_units(amount, self.decimals)

    def to_decimal_string(self, base_units: int) -> str:
        return to_decimal_string(base_units, self.decimals)

    def describe(self, base_units: int) -> str:
        return f"{self.to_decimal_string(base_units)} {self.symbol}"

    def describe_fee(self, base_units: int, precision: int = DEFAULT_FEE_DISPLAY_PRECISION) -> str:
        return f"{format_fee(base_units, self.decimals, precision)} {self.symbol}"


USDC = AmountCodec(decimals=ASSET_DECIMALS, symbol="USDC")
DOT = AmountCodec(decimals=NATIVE_DECIMALS, symbol="DOT")
