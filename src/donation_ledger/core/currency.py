from decimal import Decimal, ROUND_HALF_UP

# Currencies Stripe charges without a minor unit.
ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})

# Smallest charge for two-decimal currencies, in minor units (e.g. 0.50 GBP).
MIN_CHARGE_MINOR = 50


def is_zero_decimal(currency: str) -> bool:
    return currency.upper() in ZERO_DECIMAL_CURRENCIES


def quantize_major(amount: Decimal, currency: str) -> Decimal:
    exponent = Decimal("1") if is_zero_decimal(currency) else Decimal("0.01")
    return Decimal(amount).quantize(exponent, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Major units -> the integer amount payment processors expect."""
    if is_zero_decimal(currency):
        return max(1, int(quantize_major(amount, currency)))
    minor = int((quantize_major(amount, currency) * 100).to_integral_value())
    return max(MIN_CHARGE_MINOR, minor)


def to_major_units(minor: int | None, currency: str) -> Decimal:
    if not minor or minor <= 0:
        return Decimal("0")
    if is_zero_decimal(currency):
        return Decimal(minor)
    return (Decimal(minor) / 100).quantize(Decimal("0.01"))
