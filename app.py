# app.py
import io
import os
from datetime import date
from dotenv import load_dotenv
from flask import (
    Blueprint, Flask, current_app, g, jsonify, redirect, render_template, request, send_file, session, url_for,
)
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from models import db, Clinic, Prescription
from appUtils import (
    ValidationError, composite_id, format_display_date, send_email, split_composite_id,
    validate_doctor_form, validate_email, validate_items, validate_patient_form,
    validate_priced_items, validate_suggestion_form,
)
from authService import InvalidCredentialsError, UsernameTakenError, login, resolve_clinic_id, signup
from billingService import compute_bill_details, due_date_for, prescription_only_bill, prices_from_form
from clinicStore import (
    AlreadyWaitingError, ClinicStore, ConsultationInProgressError, MainDoctorMissingError, NotFoundError,
)
from drugSuggestions import DrugSuggestionError, get_suggestion_client
from pageVisibility import LANDING_PAGE, resolve_redirect
from pdfExport import pdf_filename, render_document
from statusWorkflow import InvalidTransition, PatientStatus

bp = Blueprint("clinic", __name__)

# API routes reachable without a session
OPEN_API = {"/api/health", "/api/login", "/api/signup"}
DOC_TYPES = ("bill", "prescription")


def create_app(test_config=None):
    load_dotenv()

    app = Flask(__name__)
    app.config.update(
        SECRET_KEY=os.getenv("SECRET_KEY", "dev-only-change-me"),
        SQLALCHEMY_DATABASE_URI=os.getenv("DATABASE_URL", "sqlite:///medichain.db"),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        APP_DOMAIN=os.getenv("APP_DOMAIN", "medichain.app"),
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY"),
        OPENAI_BASE_URL=os.getenv("OPENAI_BASE_URL", "https://openrouter.ai/api/v1"),
        SUGGESTION_MODEL=os.getenv("SUGGESTION_MODEL", "deepseek/deepseek-chat-v3.1:free"),
        PUBLIC_BASE_URL=os.getenv("PUBLIC_BASE_URL"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config["LOG_LEVEL"])
    db.init_app(app)
    app.register_blueprint(bp)
    with app.app_context():
        db.create_all()
    return app


# ============================================================
# Session, visibility gate
# ============================================================

def current_store():
    return g.get("store")

def _json_error(message, status):
    return jsonify({"error": message}), status

@bp.before_app_request
def load_session_and_gate():
    clinic_id = session.get("clinic_id")
    clinic = db.session.get(Clinic, clinic_id) if clinic_id else None
    if clinic_id and clinic is None:
        session.clear()
    g.store = ClinicStore(clinic.id) if clinic else None
    path = request.path

    if path.startswith("/api/"):
        if g.store is None and path not in OPEN_API:
            return _json_error("Authentication required.", 401)
        return None

    target = resolve_redirect(path, clinic.clinic_structure if clinic else None, clinic is not None)
    if target:
        current_app.logger.debug(f"[gate] Redirecting from {path} to {target}")
        return redirect(target)
    return None


# ============================================================
# Error handlers
# ============================================================

@bp.app_errorhandler(ValidationError)
def handle_validation(e):
    return jsonify({"errors": e.errors}), 400

@bp.app_errorhandler(NotFoundError)
def handle_not_found(e):
    return _json_error(str(e), 404)

@bp.app_errorhandler(InvalidTransition)
def handle_invalid_transition(e):
    return _json_error(str(e), 409)

@bp.app_errorhandler(AlreadyWaitingError)
@bp.app_errorhandler(ConsultationInProgressError)
@bp.app_errorhandler(MainDoctorMissingError)
@bp.app_errorhandler(UsernameTakenError)
def handle_conflict(e):
    return _json_error(str(e), 409)

@bp.app_errorhandler(InvalidCredentialsError)
def handle_invalid_credentials(e):
    return _json_error(str(e), 401)

@bp.app_errorhandler(DrugSuggestionError)
def handle_suggestion_error(e):
    return _json_error(str(e), 502)

@bp.app_errorhandler(SQLAlchemyError)
def handle_database_error(e):
    db.session.rollback()
    return _json_error("Could not save your changes. Please try again.", 500)


# ============================================================
# Auth
# ============================================================

def _start_session(user):
    session.clear()
    session["user_id"] = user.id
    session["clinic_id"] = resolve_clinic_id(user)
    session["unlocked_doctors"] = []

@bp.route("/api/signup", methods=["POST"])
def api_signup():
    data = request.get_json(silent=True) or {}
    user = signup(data.get("username"), data.get("password"), data.get("clinicName"))
    _start_session(user)
    return jsonify({"clinicId": session["clinic_id"], "redirect": LANDING_PAGE}), 201

@bp.route("/api/login", methods=["POST"])
def api_login():
    data = request.get_json(silent=True) or {}
    user = login(data.get("username"), data.get("password"))
    _start_session(user)
    return jsonify({"clinicId": session["clinic_id"], "redirect": LANDING_PAGE})

@bp.route("/api/logout", methods=["POST"])
def api_logout():
    session.clear()
    return jsonify({"ok": True})

@bp.route("/login", methods=["GET", "POST"])
def login_page():
    error = None
    if request.method == "POST":
        try:
            user = login(request.form.get("username"), request.form.get("password"))
        except InvalidCredentialsError as e:
            error = str(e)
        else:
            _start_session(user)
            return redirect(LANDING_PAGE)
    return render_template("login.html", mode="login", error=error)

@bp.route("/signup", methods=["GET", "POST"])
def signup_page():
    error = None
    if request.method == "POST":
        try:
            user = signup(request.form.get("username"), request.form.get("password"),
                          request.form.get("clinicName"))
        except ValidationError as e:
            error = " ".join(e.errors.values())
        except UsernameTakenError as e:
            error = str(e)
        else:
            _start_session(user)
            return redirect(LANDING_PAGE)
    return render_template("login.html", mode="signup", error=error)

@bp.route("/logout")
def logout_page():
    session.clear()
    return redirect(url_for("clinic.login_page"))


# ============================================================
# Dashboards
# ============================================================

@bp.route("/")
def home():
    return redirect(LANDING_PAGE)

@bp.route("/reception")
@bp.route("/pharmacy")
@bp.route("/oneman")
@bp.route("/doctor")
def dashboard():
    page = request.path.strip("/")
    return render_template("dashboard.html", page=page, state=current_store().snapshot().as_json())

@bp.route("/doctor/<doctor_id>")
def doctor_dashboard(doctor_id):
    store = current_store()
    doctor = store.get_doctor(doctor_id)
    locked = doctor_id not in session.get("unlocked_doctors", [])
    queue = [] if locked else [e.to_dict() for e in store.doctor_queue(doctor_id)]
    return render_template("dashboard.html", page="doctor", doctor=doctor.to_dict(), locked=locked,
                           queue=queue, state=store.snapshot().as_json())


# ============================================================
# State & health
# ============================================================

@bp.route("/api/health")
def health():
    try:
        db.session.execute(text("SELECT 1"))
        return jsonify({"ok": True, "message": "DB connected"})
    except SQLAlchemyError as e:
        return jsonify({"ok": False, "error": str(e)}), 503

@bp.route("/api/state")
def state():
    return jsonify(current_store().snapshot().as_json())


# ============================================================
# Patients
# ============================================================

@bp.route("/api/patients", methods=["GET"])
def list_patients():
    patients = current_store().search_patients(request.args.get("search", ""))
    return jsonify([p.to_dict() for p in patients])

@bp.route("/api/patients/today")
def todays_patients():
    return jsonify([p.to_dict() for p in current_store().todays_patients()])

@bp.route("/api/patients", methods=["POST"])
def register_patient():
    data = request.get_json(silent=True) or {}
    fields = validate_patient_form(data)
    store = current_store()
    doctor_id = data.get("doctorId")
    if doctor_id:
        store.get_doctor(doctor_id)
    patient = store.add_patient(**fields)
    entry = store.add_to_waiting_list(patient.id, doctor_id) if doctor_id else None
    return jsonify({
        "patient": store.get_patient(patient.id).to_dict(),
        "waitingEntry": entry.to_dict() if entry else None,
        "message": f"{patient.name} has been registered.",
    }), 201

@bp.route("/api/patients/<patient_id>")
def get_patient(patient_id):
    return jsonify(current_store().get_patient(patient_id).to_dict())


# ============================================================
# Doctors
# ============================================================

@bp.route("/api/doctors", methods=["GET"])
def list_doctors():
    return jsonify([d.to_dict() for d in current_store().list_doctors()])

@bp.route("/api/doctors", methods=["POST"])
def add_doctor():
    fields = validate_doctor_form(request.get_json(silent=True) or {})
    doctor = current_store().add_doctor(**fields)
    return jsonify(doctor.to_dict()), 201

@bp.route("/api/doctors/<doctor_id>", methods=["PUT"])
def update_doctor(doctor_id):
    fields = validate_doctor_form(request.get_json(silent=True) or {}, partial=True)
    return jsonify(current_store().update_doctor(doctor_id, **fields).to_dict())

@bp.route("/api/doctors/<doctor_id>", methods=["DELETE"])
def delete_doctor(doctor_id):
    current_store().delete_doctor(doctor_id)
    return jsonify({"ok": True})

@bp.route("/api/doctors/export")
def export_doctors():
    csv_text = current_store().export_doctors_csv()
    if csv_text is None:
        return _json_error("There is no data to export for doctors.", 404)
    return send_file(io.BytesIO(csv_text.encode("utf-8")), mimetype="text/csv",
                     as_attachment=True, download_name="doctors.csv")

@bp.route("/api/doctors/<doctor_id>/unlock", methods=["POST"])
def unlock_doctor(doctor_id):
    pin = (request.get_json(silent=True) or {}).get("pin", "")
    if not current_store().verify_doctor_pin(doctor_id, pin):
        return _json_error("Incorrect PIN.", 403)
    unlocked = set(session.get("unlocked_doctors", []))
    unlocked.add(doctor_id)
    session["unlocked_doctors"] = sorted(unlocked)
    return jsonify({"ok": True, "redirect": f"/doctor/{doctor_id}"})

@bp.route("/api/doctors/<doctor_id>/pin", methods=["POST"])
def change_pin(doctor_id):
    data = request.get_json(silent=True) or {}
    current_store().change_doctor_pin(doctor_id, data.get("currentPin", ""), data.get("newPin", ""),
                                      data.get("confirmPin", ""))
    return jsonify({"ok": True, "message": "Your access PIN has been changed successfully."})

@bp.route("/api/doctors/<doctor_id>/queue")
def doctor_queue(doctor_id):
    if doctor_id not in session.get("unlocked_doctors", []):
        return _json_error("Enter your 4-digit PIN to access your dashboard.", 403)
    return jsonify([e.to_dict() for e in current_store().doctor_queue(doctor_id)])


# ============================================================
# Waiting room
# ============================================================

@bp.route("/api/waiting-list", methods=["GET"])
def waiting_list():
    return jsonify([e.to_dict() for e in current_store().waiting_list()])

@bp.route("/api/waiting-list", methods=["POST"])
def add_to_waiting_list():
    data = request.get_json(silent=True) or {}
    entry = current_store().add_to_waiting_list(data.get("patientId"), data.get("doctorId"))
    return jsonify(entry.to_dict()), 201

@bp.route("/api/waiting-list/<entry_id>/status", methods=["POST"])
def advance_status(entry_id):
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    items = None
    if status in (PatientStatus.PRESCRIBED.value, PatientStatus.SENT_TO_PHARMACY.value) and "items" in data:
        items = validate_items(data["items"])
    prescription = current_store().advance_status(entry_id, status, items=items, advice=data.get("advice") or None)
    return jsonify({
        "entry": current_store().get_entry(entry_id).to_dict(),
        "prescription": _prescription_payload(prescription) if prescription else None,
    })


# ============================================================
# Pharmacy
# ============================================================

def _public_url(doc_type, clinic_id, prescription_id):
    base = current_app.config.get("PUBLIC_BASE_URL") or request.host_url
    return f"{base.rstrip('/')}/{doc_type}/{composite_id(clinic_id, prescription_id)}"

def _prescription_payload(prescription):
    payload = prescription.to_dict()
    payload["publicUrls"] = {t: _public_url(t, prescription.clinic_id, prescription.id) for t in DOC_TYPES}
    return payload

def _parse_due_date(value, settings):
    if not value:
        return due_date_for(settings)
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError({"dueDate": "Due date must be YYYY-MM-DD."})

@bp.route("/api/pharmacy")
def pharmacy_queue():
    return jsonify([_prescription_payload(p) for p in current_store().pharmacy_queue()])

@bp.route("/api/pharmacy/<prescription_id>")
def prescription_details(prescription_id):
    return jsonify(_prescription_payload(current_store().get_prescription(prescription_id)))

@bp.route("/api/pharmacy/<prescription_id>/bill", methods=["POST"])
def generate_bill(prescription_id):
    data = request.get_json(silent=True) or {}
    store = current_store()
    settings = store.settings
    prescription = store.get_prescription(prescription_id)
    include_fee = bool(data.get("includeAppointmentFee", True))
    if data.get("prescriptionOnly"):
        details = prescription_only_bill(settings, include_fee)
    else:
        priced = prices_from_form(prescription.items, data.get("prices"))
        details = compute_bill_details(priced, settings, include_fee, bool(data.get("applyRoundOff", True)))
    due = _parse_due_date(data.get("dueDate"), settings)
    prescription = store.attach_bill(prescription_id, details, due)
    return jsonify(_prescription_payload(prescription))

@bp.route("/api/pharmacy/<prescription_id>/dispense", methods=["POST"])
def dispense(prescription_id):
    prescription = current_store().mark_dispensed(prescription_id)
    return jsonify({
        "prescription": _prescription_payload(prescription),
        "message": f"{prescription.patient_name} has been marked as Done.",
    })

@bp.route("/api/pharmacy/<prescription_id>/pdf")
def download_pdf(prescription_id):
    store = current_store()
    doc_type = request.args.get("type", "bill")
    if doc_type not in DOC_TYPES:
        raise ValidationError({"type": "Document type must be bill or prescription."})
    return _pdf_response(doc_type, store.get_prescription(prescription_id), store.settings)

@bp.route("/api/pharmacy/<prescription_id>/share", methods=["POST"])
def share_document(prescription_id):
    data = request.get_json(silent=True) or {}
    doc_type = data.get("type", "bill")
    if doc_type not in DOC_TYPES:
        raise ValidationError({"type": "Document type must be bill or prescription."})
    if not validate_email(data.get("email")):
        raise ValidationError({"email": "Invalid email. Please provide a correct format (example@domain.com)."})
    store = current_store()
    prescription = store.get_prescription(prescription_id)
    clinic = store.settings
    url = _public_url(doc_type, prescription.clinic_id, prescription.id)
    body = (
        f"Dear {prescription.patient_name},\n\n"
        f"Your {doc_type} from {clinic.clinic_name} is available here:\n{url}\n\n"
        f"Thank you for choosing {clinic.clinic_name}."
    )
    try:
        send_email(data["email"].strip(), f"Your {doc_type} from {clinic.clinic_name}", body)
    except Exception as e:
        current_app.logger.error(f"[share_document] Email failed: {e}")
        return _json_error("Could not send the email. Please try again.", 502)
    return jsonify({"ok": True, "url": url})


# ============================================================
# Notifications, settings
# ============================================================

@bp.route("/api/notifications")
def notifications():
    return jsonify([n.to_dict() for n in current_store().notifications()])

@bp.route("/api/notifications/<int:notification_id>", methods=["DELETE"])
def dismiss_notification(notification_id):
    current_store().dismiss_notification(notification_id)
    return jsonify({"ok": True})

@bp.route("/api/settings", methods=["GET"])
def get_settings():
    return jsonify(current_store().settings.to_dict())

@bp.route("/api/settings", methods=["PUT"])
def update_settings():
    clinic = current_store().update_settings(request.get_json(silent=True) or {})
    return jsonify(clinic.to_dict())

@bp.route("/api/settings/profile", methods=["PUT"])
def update_profile():
    data = request.get_json(silent=True) or {}
    clinic = current_store().update_profile(data.get("clinicName"), data.get("clinicAddress"), data.get("logoSvg"))
    return jsonify(clinic.to_dict())


# ============================================================
# AI suggestions
# ============================================================

@bp.route("/api/suggestions", methods=["POST"])
def suggest_drugs():
    history, complaint = validate_suggestion_form(request.get_json(silent=True) or {})
    suggestion = get_suggestion_client().suggest(history, complaint)
    return jsonify({"suggestedDrugs": suggestion.drugs, "reasoning": suggestion.reasoning})


# ============================================================
# One-man mode
# ============================================================

@bp.route("/api/oneman/consultations", methods=["POST"])
def start_consultation():
    data = request.get_json(silent=True) or {}
    entry = current_store().start_consultation(data.get("patientId"))
    return jsonify(entry.to_dict()), 201

@bp.route("/api/oneman/consultations/<entry_id>", methods=["DELETE"])
def cancel_consultation(entry_id):
    current_store().cancel_consultation(entry_id)
    return jsonify({"ok": True})

@bp.route("/api/oneman/consultations/<entry_id>/finish", methods=["POST"])
def finish_consultation(entry_id):
    data = request.get_json(silent=True) or {}
    store = current_store()
    priced = validate_priced_items(data.get("items"))
    prescription = store.finish_consultation(
        entry_id, priced,
        advice=data.get("advice") or None,
        due_date=_parse_due_date(data.get("dueDate"), store.settings),
        include_appointment_fee=bool(data.get("includeAppointmentFee", True)),
        apply_round_off=bool(data.get("applyRoundOff", True)),
    )
    return jsonify(_prescription_payload(prescription)), 201


# ============================================================
# Public documents
# ============================================================

def _load_public(value):
    clinic_id, prescription_id = split_composite_id(value)
    if not clinic_id:
        return None, None
    clinic = db.session.get(Clinic, clinic_id)
    prescription = Prescription.query.filter_by(id=prescription_id, clinic_id=clinic_id).first()
    if clinic is None or prescription is None:
        return None, None
    return clinic, prescription

def _pdf_response(doc_type, prescription, clinic):
    try:
        pdf, _ = render_document(doc_type, prescription, clinic,
                                 public_url=_public_url(doc_type, clinic.id, prescription.id))
    except Exception as e:
        current_app.logger.exception(f"[_pdf_response] PDF generation failed: {e}")
        return _json_error("Could not generate the PDF. Please try again.", 500)
    filename = pdf_filename(doc_type, prescription.patient_name, prescription.id)
    # send_file adds an RFC 5987 filename* for names outside latin-1
    return send_file(io.BytesIO(pdf), mimetype="application/pdf", as_attachment=True, download_name=filename)

@bp.route("/bill/<document_id>")
@bp.route("/prescription/<document_id>")
def public_document(document_id):
    doc_type = request.path.split("/")[1]
    clinic, prescription = _load_public(document_id)
    if prescription is None:
        title = "Bill Not Found" if doc_type == "bill" else "Prescription Not Found"
        if request.args.get("format") == "json":
            return _json_error(title, 404)
        return render_template("not_found.html", title=title), 404
    if request.args.get("format") == "json":
        return jsonify({"settings": clinic.to_dict(), "prescription": prescription.to_dict()})
    return render_template(
        "document.html",
        doc_type=doc_type,
        clinic=clinic,
        prescription=prescription,
        visit_date=format_display_date(prescription.visit_date),
        due_date=format_display_date(prescription.due_date),
        pdf_url=f"/{doc_type}/{document_id}/pdf",
    )

@bp.route("/bill/<document_id>/pdf")
@bp.route("/prescription/<document_id>/pdf")
def public_pdf(document_id):
    doc_type = request.path.split("/")[1]
    clinic, prescription = _load_public(document_id)
    if prescription is None:
        return render_template("not_found.html", title="Document Not Found"), 404
    return _pdf_response(doc_type, prescription, clinic)


if __name__ == "__main__":
    create_app().run(port=8000, debug=True)
