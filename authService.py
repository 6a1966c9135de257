# authService.py
import re

from flask import current_app
from werkzeug.security import generate_password_hash, check_password_hash

from models import db, Clinic, ClinicUser
from appUtils import ValidationError
from statusWorkflow import ClinicStructure


class InvalidCredentialsError(Exception):
    def __init__(self):
        super().__init__("Invalid username or password.")

class UsernameTakenError(Exception):
    pass


DEFAULT_LOGO_SVG = (
    '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 210 148">'
    '<path d="M95 40v30H65v20h30v30h20V90h30V70h-30V40z" fill="#000"/></svg>'
)


def username_to_email(username):
    domain = current_app.config.get("APP_DOMAIN", "medichain.app")
    return f"{username.strip().lower()}@{domain}"

def validate_credentials(username, password):
    errors = {}
    if not re.fullmatch(r"[A-Za-z0-9._-]{3,50}", (username or "").strip()):
        errors["username"] = "Username must be 3-50 letters, digits, dots, dashes or underscores."
    if len(password or "") < 6:
        errors["password"] = "Password must be at least 6 characters."
    if errors:
        raise ValidationError(errors)


def default_settings(username, clinic_name=None):
    return dict(
        clinic_name=clinic_name or f"{username}'s Clinic",
        clinic_address="123 Health St, Medville",
        receipt_validity_days=30,
        currency="₹",
        tax_type="GST",
        tax_percentage=5,
        appointment_fee=100,
        clinic_structure=ClinicStructure.FULL_WORKFLOW.value,
        logo_svg=DEFAULT_LOGO_SVG,
    )


def signup(username, password, clinic_name=None):
    """Create an owner account and its clinic; the clinic id is the owner's user id."""
    validate_credentials(username, password)
    email = username_to_email(username)
    if ClinicUser.query.filter_by(email=email).first():
        raise UsernameTakenError("That username is already taken.")

    user = ClinicUser(email=email, password_hash=generate_password_hash(password))
    db.session.add(user)
    db.session.flush()
    clinic = Clinic(id=user.id, **default_settings(username.strip(), clinic_name))
    db.session.add(clinic)
    user.clinic_id = clinic.id
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[signup] could not create clinic for {email}")
        raise
    current_app.logger.info(f"[signup] Created clinic {clinic.id} for {email}")
    return user


def login(username, password):
    """Return the user for valid credentials; unknown users and bad passwords fail alike."""
    if not username or not password:
        raise InvalidCredentialsError()
    user = ClinicUser.query.filter_by(email=username_to_email(username)).first()
    if user is None or not check_password_hash(user.password_hash, password):
        current_app.logger.debug("[login] rejected credentials")
        raise InvalidCredentialsError()
    return user


def resolve_clinic_id(user):
    # staff accounts carry a clinic id; an owner's clinic shares its user id
    return user.clinic_id or user.id
