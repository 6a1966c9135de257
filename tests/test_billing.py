from datetime import date
from types import SimpleNamespace

import pytest

from appUtils import ValidationError
from billingService import (
    bill_total_matches, compute_bill_details, due_date_for, prescription_only_bill, prices_from_form,
)


def clinic(**overrides):
    values = dict(tax_type="GST", tax_percentage=5, appointment_fee=100, receipt_validity_days=30)
    values.update(overrides)
    return SimpleNamespace(**values)


def test_bill_breakdown():
    details = compute_bill_details(
        [{"item": "Paracetamol 500mg", "price": 20}, {"item": "Cough syrup", "price": 85}], clinic())
    assert details["subtotal"] == 105
    assert details["taxInfo"] == {"type": "GST", "percentage": 5, "amount": 5.25}
    assert details["appointmentFee"] == 100
    # 210.25 rounds down to 210
    assert details["roundOff"] == -0.25
    assert details["total"] == 210
    assert bill_total_matches(details)


@pytest.mark.parametrize("settings,fee,round_off", [
    (clinic(), True, True),
    (clinic(), False, False),
    (clinic(tax_type="No Tax"), True, True),
    (clinic(tax_percentage=0, appointment_fee=0), True, True),
    (clinic(tax_type="VAT", tax_percentage=12.5), False, True),
])
@pytest.mark.parametrize("prices", [[], [0], [19.99], [10, 20.01, 0.49], [999.995, 1]])
def test_total_is_sum_of_parts(settings, fee, round_off, prices):
    items = [{"item": f"item {i}", "price": p} for i, p in enumerate(prices)]
    details = compute_bill_details(items, settings, fee, round_off)
    assert bill_total_matches(details)


def test_no_tax_clinic_bills_zero_tax():
    details = compute_bill_details([{"item": "x", "price": 100}], clinic(tax_type="No Tax"))
    assert details["taxInfo"] == {"type": "No Tax", "percentage": 0, "amount": 0.0}


def test_round_off_can_be_skipped():
    details = compute_bill_details([{"item": "x", "price": 10.4}], clinic(), apply_round_off=False)
    assert details["roundOff"] == 0.0
    assert details["total"] == 110.92


def test_negative_price_is_rejected():
    with pytest.raises(ValidationError):
        compute_bill_details([{"item": "x", "price": -1}], clinic())


def test_prescription_only_bill_carries_the_fee():
    details = prescription_only_bill(clinic())
    assert details["items"] == []
    assert details["total"] == 100
    assert prescription_only_bill(clinic(), include_appointment_fee=False)["total"] == 0
    assert bill_total_matches(details)


def test_unpriced_items_bill_at_zero():
    rows = prices_from_form(["a", "b"], {"a": 12})
    assert rows == [{"item": "a", "price": 12}, {"item": "b", "price": 0}]


def test_due_date_uses_receipt_validity():
    assert due_date_for(clinic(receipt_validity_days=10), date(2026, 10, 19)) == date(2026, 10, 29)
    assert due_date_for(clinic(receipt_validity_days=None), date(2026, 10, 19)) == date(2026, 10, 26)
