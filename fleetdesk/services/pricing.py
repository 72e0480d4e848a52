"""Pricing calculator for rentals.

Pure functions over ``Decimal``; nothing here touches the database. The
booking workflow and the invoice generator call into these with an explicit
``RentalConfig`` so the same figures can be previewed before a booking
exists. Amounts are kept at full precision and only rounded by ``to_money``
when a figure is persisted or shown.
"""

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List

from pydantic import BaseModel, ConfigDict

from fleetdesk.core.time import ensure_utc

CENTS = Decimal("0.01")
ZERO = Decimal("0")
HOURS_PER_DAY = 24
_DAY = timedelta(days=1)


class RentalConfig(BaseModel):
    """Rate and invoicing defaults threaded through every pricing call."""

    model_config = ConfigDict(frozen=True)

    free_mileage_per_day: int = 100
    extra_mileage_rate: Decimal = Decimal("20.00")
    tax_rate: Decimal = ZERO
    invoice_prefix: str = "INV"
    payment_terms_days: int = 7
    currency_symbol: str = "Rs."
    invoice_terms: str | None = None


class RentalQuote(BaseModel):
    rental_days: int
    daily_rate: Decimal
    discount_percent: Decimal
    rental_amount: Decimal
    package_charges: Decimal
    custom_costs_total: Decimal
    free_mileage: int
    extra_mileage_rate: Decimal
    estimated_total: Decimal


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_money(value) -> Decimal:
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def rental_days(start: datetime, end: datetime) -> int:
    """Whole days billed for a period: ceil(hours / 24), never less than one."""
    elapsed = ensure_utc(end) - ensure_utc(start)
    full_days, remainder = divmod(elapsed, _DAY)
    days = full_days + (1 if remainder else 0)
    return max(1, days)


def base_rental_amount(daily_rate, days: int, discount_percent=ZERO) -> Decimal:
    """Vehicle rental for ``days`` with at most one percentage discount applied."""
    amount = to_decimal(daily_rate) * days
    discount = min(to_decimal(discount_percent), Decimal("100"))
    if discount > 0:
        amount = amount * (Decimal("100") - discount) / Decimal("100")
    return amount


def max_package_discount(packages: Iterable) -> Decimal:
    """Largest discount percentage among the selected packages; discounts never stack."""
    best = ZERO
    for package in packages:
        discount = to_decimal(package.discount)
        if discount > best:
            best = discount
    return best


def free_mileage_allowance(days: int, per_day_allowance: int) -> int:
    return days * per_day_allowance


def extra_mileage(total_mileage: int, free_allowance: int) -> int:
    return max(0, total_mileage - free_allowance)


def extra_mileage_cost(total_mileage: int, free_allowance: int, rate_per_unit) -> Decimal:
    over = extra_mileage(total_mileage, free_allowance)
    if over == 0:
        return ZERO
    return Decimal(over) * to_decimal(rate_per_unit)


def package_charge(package, days: int) -> Decimal:
    """Charge for one package: flat base price, per-day price, or hourly estimate.

    Works with ``Package`` rows as well as the ``BookingPackage`` snapshots.
    A package carrying only a discount contributes nothing here.
    """
    if package.base_price:
        return to_decimal(package.base_price)
    if package.price_per_day:
        return to_decimal(package.price_per_day) * days
    if package.price_per_hour:
        return to_decimal(package.price_per_hour) * days * HOURS_PER_DAY
    return ZERO


def package_charges(packages: Iterable, days: int) -> Decimal:
    return sum((package_charge(package, days) for package in packages), ZERO)


def applicable_custom_costs(package, selected_optional_cost_ids: Iterable[int] | None = None) -> List:
    """Required costs always apply; optional ones only when explicitly selected."""
    selected = set(selected_optional_cost_ids or [])
    return [
        cost
        for cost in package.custom_costs
        if cost.is_active and (not cost.is_optional or cost.id in selected)
    ]


def custom_costs_total(package, selected_optional_cost_ids: Iterable[int] | None = None) -> Decimal:
    costs = applicable_custom_costs(package, selected_optional_cost_ids)
    return sum((to_decimal(cost.price) for cost in costs), ZERO)


def tax_amount(subtotal_after_discount, tax_rate_percent) -> Decimal:
    rate = to_decimal(tax_rate_percent)
    if rate <= 0:
        return ZERO
    return to_decimal(subtotal_after_discount) * rate / Decimal("100")


def quote_rental(
    daily_rate,
    start: datetime,
    end: datetime,
    packages: Iterable,
    config: RentalConfig,
    extra_costs=ZERO,
) -> RentalQuote:
    """Non-binding estimate for a planned period, as shown before confirmation."""
    packages = list(packages)
    days = rental_days(start, end)
    discount = max_package_discount(packages)
    rental_amount = base_rental_amount(daily_rate, days, discount)
    packages_total = package_charges(packages, days)
    extras = to_decimal(extra_costs)
    return RentalQuote(
        rental_days=days,
        daily_rate=to_money(daily_rate),
        discount_percent=discount,
        rental_amount=to_money(rental_amount),
        package_charges=to_money(packages_total),
        custom_costs_total=to_money(extras),
        free_mileage=free_mileage_allowance(days, config.free_mileage_per_day),
        extra_mileage_rate=to_money(config.extra_mileage_rate),
        estimated_total=to_money(rental_amount + packages_total + extras),
    )
