# billingService.py
import math
from datetime import date, timedelta

from appUtils import NO_TAX, parse_amount, ValidationError

DEFAULT_VALIDITY_DAYS = 7


def _round_half_up(value):
    return math.floor(value + 0.5)

def _money(value):
    return round(value + 0.0, 2)


def compute_bill_details(priced_items, settings, include_appointment_fee=True, apply_round_off=True):
    """
    Build the bill breakdown for a consultation.

    priced_items: [{"item": str, "price": number}, ...] in prescription order.
    settings: the clinic row (tax type/percentage, appointment fee).

    subtotal = sum of prices
    tax      = subtotal * percentage / 100 (zero when the clinic bills "No Tax")
    roundOff = distance to the nearest whole unit, when requested
    total    = subtotal + tax + appointment fee + roundOff
    """
    items = []
    for row in priced_items:
        price = parse_amount(row.get("price", 0))
        if price is None:
            raise ValidationError({"prices": f"Invalid price for {row.get('item')}."})
        items.append({"item": row["item"], "price": _money(price)})

    subtotal = _money(sum(i["price"] for i in items))
    taxed = settings.tax_type != NO_TAX and settings.tax_percentage
    percentage = settings.tax_percentage if taxed else 0
    tax_amount = _money(subtotal * percentage / 100) if taxed else 0.0
    fee = _money(settings.appointment_fee) if include_appointment_fee else 0.0

    before_round_off = subtotal + tax_amount + fee
    round_off = _money(_round_half_up(before_round_off) - before_round_off) if apply_round_off else 0.0

    return {
        "items": items,
        "subtotal": subtotal,
        "taxInfo": {
            "type": settings.tax_type if taxed else NO_TAX,
            "percentage": percentage,
            "amount": tax_amount,
        },
        "appointmentFee": fee,
        "roundOff": round_off,
        "total": _money(subtotal + tax_amount + fee + round_off),
    }


def prescription_only_bill(settings, include_appointment_fee=True):
    """No priced items and no tax; only the appointment fee is carried."""
    fee = _money(settings.appointment_fee) if include_appointment_fee else 0.0
    return {
        "items": [],
        "subtotal": 0.0,
        "taxInfo": {"type": NO_TAX, "percentage": 0, "amount": 0.0},
        "appointmentFee": fee,
        "roundOff": 0.0,
        "total": fee,
    }


def prices_from_form(items, prices):
    """Pair prescription items with user-entered prices; unpriced items bill at zero."""
    prices = prices or {}
    if not isinstance(prices, dict):
        raise ValidationError({"prices": "Prices must map each item to its price."})
    return [{"item": item, "price": prices.get(item, 0) or 0} for item in items]


def due_date_for(settings, today=None):
    days = settings.receipt_validity_days or DEFAULT_VALIDITY_DAYS
    return (today or date.today()) + timedelta(days=days)


def bill_total_matches(details, tolerance=0.005):
    expected = (
        details["subtotal"]
        + details["taxInfo"]["amount"]
        + details["appointmentFee"]
        + details["roundOff"]
    )
    return abs(details["total"] - expected) <= tolerance
