import re
from datetime import datetime
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
import os

GENDERS = ("Male", "Female", "Other")
TAX_TYPES = ("VAT", "GST", "Sales Tax", "No Tax")
NO_TAX = "No Tax"


class ValidationError(Exception):
    """Form-field errors, keyed by field name."""

    def __init__(self, errors):
        self.errors = errors
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))


def validate_name(name):
    return bool(name) and len(name.strip()) >= 2

def validate_phone(phone):
    return bool(re.fullmatch(r"\d{3}-\d{3}-\d{4}", (phone or "").strip()))

def validate_pin(pin):
    return bool(re.fullmatch(r"\d{4}", pin or ""))

def validate_email(email):
    return bool(re.fullmatch(r"[^@]+@[^@]+\.[^@]+", (email or "").strip()))

def parse_age(value):
    try:
        age = int(value)
    except (TypeError, ValueError):
        return None
    return age if age >= 0 else None

def parse_amount(value):
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    return amount if amount >= 0 else None


def validate_patient_form(data):
    errors = {}
    if not validate_name(data.get("name")):
        errors["name"] = "Name must be at least 2 characters."
    if not validate_phone(data.get("phone")):
        errors["phone"] = "Phone number must be in XXX-XXX-XXXX format."
    if parse_age(data.get("age")) is None:
        errors["age"] = "Age must be a positive number."
    if data.get("gender") not in GENDERS:
        errors["gender"] = "Gender must be Male, Female or Other."
    if errors:
        raise ValidationError(errors)
    return {
        "name": data["name"].strip(),
        "phone": data["phone"].strip(),
        "age": parse_age(data["age"]),
        "gender": data["gender"],
    }

def validate_doctor_form(data, partial=False):
    errors = {}
    if not partial or "name" in data:
        if not validate_name(data.get("name")):
            errors["name"] = "Name must be at least 2 characters."
    if not partial or "specialization" in data:
        if not validate_name(data.get("specialization")):
            errors["specialization"] = "Specialization must be at least 2 characters."
    if errors:
        raise ValidationError(errors)
    return {k: data[k].strip() for k in ("name", "specialization") if k in data}

def validate_new_pin(new_pin, confirm_pin):
    if new_pin != confirm_pin:
        raise ValidationError({"confirmPin": "New PINs do not match."})
    if not validate_pin(new_pin):
        raise ValidationError({"newPin": "PIN must be 4 digits."})
    return new_pin

def validate_suggestion_form(data):
    errors = {}
    if len((data.get("patientHistory") or "").strip()) < 20:
        errors["patientHistory"] = "Patient history must be at least 20 characters."
    if len((data.get("chiefComplaint") or "").strip()) < 10:
        errors["chiefComplaint"] = "Chief complaint must be at least 10 characters."
    if errors:
        raise ValidationError(errors)
    return data["patientHistory"].strip(), data["chiefComplaint"].strip()

def validate_items(items):
    """Prescription items: a non-empty list of non-blank strings."""
    if not isinstance(items, list) or not items:
        raise ValidationError({"items": "Add at least one item to the prescription."})
    cleaned = [str(i).strip() for i in items if str(i).strip()]
    if len(cleaned) != len(items):
        raise ValidationError({"items": "Prescription items cannot be blank."})
    return cleaned

def validate_priced_items(rows):
    """Billing pad rows: [{"item": str, "price": number}, ...]."""
    if not isinstance(rows, list) or not rows:
        raise ValidationError({"items": "Add at least one item to the prescription."})
    cleaned = []
    for row in rows:
        name = str(row.get("item", "")).strip()
        price = parse_amount(row.get("price", 0))
        if not name:
            raise ValidationError({"items": "Prescription items cannot be blank."})
        if price is None:
            raise ValidationError({"items": f"Invalid price for {name}."})
        cleaned.append({"item": name, "price": price})
    return cleaned


def initials_for(name):
    return "".join(part[0] for part in name.split() if part).upper()

def avatar_url_for(name):
    return f"https://placehold.co/100x100.png?text={name[:1]}"

def clock_time(now=None):
    return (now or datetime.now()).strftime("%H:%M")

def format_display_date(value):
    """19 -> "19th Oct, 2026"; 1/21/31 take "st", 2/22 "nd", 3/23 "rd"."""
    if value is None:
        return None
    day = value.day
    if day in (1, 21, 31):
        suffix = "st"
    elif day in (2, 22):
        suffix = "nd"
    elif day in (3, 23):
        suffix = "rd"
    else:
        suffix = "th"
    return f"{day}{suffix} {value.strftime('%b')}, {value.year}"

def composite_id(clinic_id, record_id):
    return f"{clinic_id}_{record_id}"

def split_composite_id(value):
    """Split on the first underscore; returns (None, None) when either half is missing."""
    clinic_id, sep, record_id = (value or "").partition("_")
    if not sep or not clinic_id or not record_id:
        return None, None
    return clinic_id, record_id


def send_email(to_email, subject, body):
    message = Mail(
        from_email=os.getenv("MAIL_FROM", "no-reply@medichain.app"),
        to_emails=to_email,
        subject=subject,
        plain_text_content=body
    )
    sg = SendGridAPIClient(os.getenv("SENDGRID_API_KEY"))
    response = sg.send(message)
    return response.status_code
