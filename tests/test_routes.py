import pytest

from conftest import add_doctor, register
from drugSuggestions import DrugSuggestionError


def send_to_pharmacy(client, items=("Paracetamol 500mg",), advice="Rest"):
    doctor = add_doctor(client, name="Dr. Smith")
    entry = register(client, "Jane Doe", doctorId=doctor["id"])["waitingEntry"]
    for status in ("called", "in_consult"):
        assert client.post(f"/api/waiting-list/{entry['id']}/status", json={"status": status}).status_code == 200
    res = client.post(f"/api/waiting-list/{entry['id']}/status",
                      json={"status": "sent_to_pharmacy", "items": list(items), "advice": advice})
    assert res.status_code == 200, res.get_json()
    return res.get_json()["prescription"]


def public_path(url):
    return url.replace("http://clinic.test", "")


# ---------- auth and visibility ----------

def test_pages_redirect_to_login_without_a_session(client):
    res = client.get("/reception")
    assert res.status_code == 302
    assert res.headers["Location"].endswith("/login")


def test_api_requires_a_session(client):
    assert client.get("/api/state").status_code == 401


def test_health_is_open(client):
    assert client.get("/api/health").get_json()["ok"] is True


def test_login_with_unknown_username_is_generic(client):
    res = client.post("/api/login", json={"username": "ghost", "password": "whatever1"})
    assert res.status_code == 401
    assert res.get_json()["error"] == "Invalid username or password."


def test_login_page_and_form_signup(client):
    assert client.get("/login").status_code == 200
    res = client.post("/signup", data={"username": "sunrise", "password": "secret123"})
    assert res.status_code == 302
    assert res.headers["Location"].endswith("/reception")
    assert client.get("/reception").status_code == 200


def test_form_login_shows_error(client):
    res = client.post("/login", data={"username": "ghost", "password": "whatever1"})
    assert res.status_code == 200
    assert b"Invalid username or password." in res.data


def test_one_man_clinic_hides_doctor_and_pharmacy_pages(auth_client):
    res = auth_client.put("/api/settings", json={"clinicStructure": "one_man"})
    assert res.status_code == 200
    for page in ("/pharmacy", "/doctor"):
        res = auth_client.get(page)
        assert res.status_code == 302
        assert res.headers["Location"].endswith("/reception")
    assert auth_client.get("/oneman").status_code == 200


def test_full_workflow_hides_one_man_page(auth_client):
    assert auth_client.get("/oneman").status_code == 302
    for page in ("/reception", "/doctor", "/pharmacy"):
        assert auth_client.get(page).status_code == 200


# ---------- patients, doctors ----------

def test_patient_registration_validates_fields(auth_client):
    res = auth_client.post("/api/patients", json={"name": "J", "phone": "12345", "age": -1, "gender": "x"})
    assert res.status_code == 400
    assert set(res.get_json()["errors"]) == {"name", "phone", "age", "gender"}


def test_patient_search(auth_client):
    register(auth_client, "Jane Doe")
    register(auth_client, "John Roe", phone="555-999-0000")
    names = [p["name"] for p in auth_client.get("/api/patients?search=roe").get_json()]
    assert names == ["John Roe"]
    assert len(auth_client.get("/api/patients/today").get_json()) == 0


def test_doctor_pin_unlocks_dashboard(auth_client):
    doctor = add_doctor(auth_client)
    assert b"Enter your 4-digit PIN" in auth_client.get(f"/doctor/{doctor['id']}").data
    assert auth_client.get(f"/api/doctors/{doctor['id']}/queue").status_code == 403
    assert auth_client.post(f"/api/doctors/{doctor['id']}/unlock", json={"pin": "0000"}).status_code == 403
    assert auth_client.post(f"/api/doctors/{doctor['id']}/unlock", json={"pin": "1111"}).status_code == 200
    assert auth_client.get(f"/api/doctors/{doctor['id']}/queue").get_json() == []


def test_doctor_pin_change_reports_wrong_current_pin(auth_client):
    doctor = add_doctor(auth_client)
    res = auth_client.post(f"/api/doctors/{doctor['id']}/pin",
                           json={"currentPin": "9999", "newPin": "2468", "confirmPin": "2468"})
    assert res.status_code == 400
    assert res.get_json()["errors"] == {"currentPin": "Your current PIN is incorrect."}


def test_doctor_csv_export(auth_client):
    assert auth_client.get("/api/doctors/export").status_code == 404
    add_doctor(auth_client)
    res = auth_client.get("/api/doctors/export")
    assert res.mimetype == "text/csv"
    assert b"Smith" in res.data


def test_unknown_doctor_is_not_found(auth_client):
    assert auth_client.delete("/api/doctors/nope").status_code == 404


# ---------- waiting room, pharmacy ----------

def test_queueing_twice_conflicts(auth_client):
    doctor = add_doctor(auth_client)
    patient = register(auth_client, doctorId=doctor["id"])["patient"]
    res = auth_client.post("/api/waiting-list", json={"patientId": patient["id"], "doctorId": doctor["id"]})
    assert res.status_code == 409


def test_invalid_transition_conflicts(auth_client):
    doctor = add_doctor(auth_client)
    entry = register(auth_client, doctorId=doctor["id"])["waitingEntry"]
    res = auth_client.post(f"/api/waiting-list/{entry['id']}/status", json={"status": "dispensed"})
    assert res.status_code == 409


def test_prescription_round_trips_through_its_public_url(auth_client):
    prescription = send_to_pharmacy(auth_client)
    url = prescription["publicUrls"]["prescription"]
    auth_client.post("/api/logout")

    data = auth_client.get(public_path(url) + "?format=json").get_json()["prescription"]
    assert data["patientName"] == "Jane Doe"
    assert data["doctor"] == "Dr. Smith"
    assert data["items"] == ["Paracetamol 500mg"]
    assert data["advice"] == "Rest"

    page = auth_client.get(public_path(url))
    assert page.status_code == 200
    assert b"Jane Doe" in page.data and b"Paracetamol 500mg" in page.data


def test_pharmacy_bills_and_dispenses(auth_client):
    prescription = send_to_pharmacy(auth_client)
    queue = auth_client.get("/api/pharmacy").get_json()
    assert [p["id"] for p in queue] == [prescription["id"]]

    res = auth_client.post(f"/api/pharmacy/{prescription['id']}/bill",
                           json={"prices": {"Paracetamol 500mg": 20}, "dueDate": "2026-11-18"})
    bill = res.get_json()
    assert bill["billDetails"]["subtotal"] == 20
    assert bill["billDetails"]["total"] == 121
    assert bill["dueDate"] == "2026-11-18"

    pdf = auth_client.get(public_path(bill["publicUrls"]["bill"]) + "/pdf")
    assert pdf.mimetype == "application/pdf"
    assert f"bill-Jane_Doe-{prescription['id']}.pdf" in pdf.headers["Content-Disposition"]

    res = auth_client.post(f"/api/pharmacy/{prescription['id']}/dispense")
    assert res.get_json()["message"] == "Jane Doe has been marked as Done."
    assert auth_client.get("/api/pharmacy").get_json() == []
    assert auth_client.post(f"/api/pharmacy/{prescription['id']}/dispense").status_code == 409


def test_prescription_only_bill(auth_client):
    prescription = send_to_pharmacy(auth_client)
    res = auth_client.post(f"/api/pharmacy/{prescription['id']}/bill",
                           json={"prescriptionOnly": True, "includeAppointmentFee": False})
    assert res.get_json()["billDetails"]["total"] == 0


def test_bad_due_date_is_a_validation_error(auth_client):
    prescription = send_to_pharmacy(auth_client)
    res = auth_client.post(f"/api/pharmacy/{prescription['id']}/bill", json={"dueDate": "next week"})
    assert res.status_code == 400


def test_share_by_email(auth_client, monkeypatch):
    sent = []
    monkeypatch.setattr("app.send_email", lambda to, subject, body: sent.append((to, subject, body)) or 202)
    prescription = send_to_pharmacy(auth_client)

    res = auth_client.post(f"/api/pharmacy/{prescription['id']}/share", json={"email": "bad", "type": "bill"})
    assert res.status_code == 400

    res = auth_client.post(f"/api/pharmacy/{prescription['id']}/share",
                           json={"email": "jane@example.com", "type": "prescription"})
    assert res.status_code == 200
    assert sent[0][0] == "jane@example.com"
    assert res.get_json()["url"] in sent[0][2]


def test_share_failure_is_reported(auth_client, monkeypatch):
    def boom(*args):
        raise RuntimeError("sendgrid unavailable")
    monkeypatch.setattr("app.send_email", boom)
    prescription = send_to_pharmacy(auth_client)
    res = auth_client.post(f"/api/pharmacy/{prescription['id']}/share", json={"email": "jane@example.com"})
    assert res.status_code == 502


def test_missing_public_document(client):
    res = client.get("/bill/nope")
    assert res.status_code == 404
    assert b"Bill Not Found" in res.data
    assert client.get("/prescription/abc_def?format=json").status_code == 404


def test_notifications_can_be_dismissed(auth_client):
    send_to_pharmacy(auth_client)
    notes = auth_client.get("/api/notifications").get_json()
    assert len(notes) == 2
    auth_client.delete(f"/api/notifications/{notes[0]['id']}")
    assert len(auth_client.get("/api/notifications").get_json()) == 1


# ---------- one-man mode ----------

def test_one_man_consultation_flow(auth_client):
    doctor = add_doctor(auth_client)
    patient = register(auth_client)["patient"]
    res = auth_client.post("/api/oneman/consultations", json={"patientId": patient["id"]})
    assert res.status_code == 409

    auth_client.put("/api/settings", json={"clinicStructure": "one_man", "mainDoctorId": doctor["id"]})
    entry = auth_client.post("/api/oneman/consultations", json={"patientId": patient["id"]}).get_json()
    assert entry["status"] == "in_consult"

    res = auth_client.post(f"/api/oneman/consultations/{entry['id']}/finish",
                           json={"items": [{"item": "Cetirizine", "price": 30}], "advice": "Sleep well"})
    assert res.status_code == 201
    body = res.get_json()
    assert body["status"] == "dispensed"
    assert body["billDetails"]["subtotal"] == 30


# ---------- suggestions ----------

def test_suggestion_form_is_validated(auth_client):
    res = auth_client.post("/api/suggestions", json={"patientHistory": "short", "chiefComplaint": "x"})
    assert res.status_code == 400


def test_suggestions_use_the_configured_client(auth_client, suggestion_client):
    res = auth_client.post("/api/suggestions", json={
        "patientHistory": "Hypertensive, on amlodipine for 3 years",
        "chiefComplaint": "Fever and body ache",
    })
    assert res.get_json() == {"suggestedDrugs": ["Paracetamol 500mg"], "reasoning": "Fever with body ache."}
    assert suggestion_client.calls[0][1] == "Fever and body ache"


def test_suggestion_failure_is_generic(app, auth_client):
    class Broken:
        def suggest(self, history, complaint):
            raise DrugSuggestionError()
    app.config["DRUG_SUGGESTION_CLIENT"] = Broken()
    res = auth_client.post("/api/suggestions", json={
        "patientHistory": "Hypertensive, on amlodipine for 3 years",
        "chiefComplaint": "Fever and body ache",
    })
    assert res.status_code == 502
    assert res.get_json()["error"] == "An unexpected error occurred. Please try again."


@pytest.mark.parametrize("path", ["/api/state", "/api/settings"])
def test_state_endpoints(auth_client, path):
    assert auth_client.get(path).status_code == 200


def test_logout_ends_the_session(auth_client):
    res = auth_client.get("/logout")
    assert res.headers["Location"].endswith("/login")
    assert auth_client.get("/api/state").status_code == 401


def test_pdf_download_name_survives_non_latin_patient_names(auth_client):
    doctor = add_doctor(auth_client)
    entry = register(auth_client, "राम कुमार", doctorId=doctor["id"])["waitingEntry"]
    for status in ("called", "in_consult"):
        auth_client.post(f"/api/waiting-list/{entry['id']}/status", json={"status": status})
    res = auth_client.post(f"/api/waiting-list/{entry['id']}/status",
                           json={"status": "sent_to_pharmacy", "items": ["Paracetamol 500mg"]})
    prescription = res.get_json()["prescription"]

    pdf = auth_client.get(public_path(prescription["publicUrls"]["bill"]) + "/pdf")
    assert pdf.status_code == 200
    assert pdf.data.startswith(b"%PDF")
    disposition = pdf.headers["Content-Disposition"]
    # WSGI servers write headers as latin-1
    disposition.encode("latin-1")
    assert "filename*=UTF-8''" in disposition
    assert prescription["id"] in disposition


def test_doctor_csv_is_sent_as_an_attachment(auth_client):
    add_doctor(auth_client)
    res = auth_client.get("/api/doctors/export")
    assert res.headers["Content-Disposition"] == "attachment; filename=doctors.csv"


def test_revised_items_reach_the_pharmacy(auth_client):
    doctor = add_doctor(auth_client)
    entry = register(auth_client, doctorId=doctor["id"])["waitingEntry"]
    for status in ("called", "in_consult"):
        auth_client.post(f"/api/waiting-list/{entry['id']}/status", json={"status": status})
    auth_client.post(f"/api/waiting-list/{entry['id']}/status", json={"status": "prescribed", "items": ["A"]})
    res = auth_client.post(f"/api/waiting-list/{entry['id']}/status",
                           json={"status": "sent_to_pharmacy", "items": ["B", "C"]})
    assert res.status_code == 200
    assert res.get_json()["prescription"]["items"] == ["B", "C"]
    assert auth_client.get("/api/pharmacy").get_json()[0]["items"] == ["B", "C"]


def test_no_pharmacy_prescriptions_stay_billable(auth_client):
    auth_client.put("/api/settings", json={"clinicStructure": "no_pharmacy"})
    doctor = add_doctor(auth_client)
    entry = register(auth_client, doctorId=doctor["id"])["waitingEntry"]
    for status in ("called", "in_consult"):
        auth_client.post(f"/api/waiting-list/{entry['id']}/status", json={"status": status})
    auth_client.post(f"/api/waiting-list/{entry['id']}/status", json={"status": "prescribed", "items": ["A"]})

    state = auth_client.get("/api/state").get_json()
    prescription_id = state["waitingList"][0]["prescriptionId"]
    assert [p["id"] for p in state["pharmacyQueue"]] == [prescription_id]

    res = auth_client.post(f"/api/pharmacy/{prescription_id}/bill", json={"prices": {"A": 50}})
    assert res.status_code == 200
    assert auth_client.post(f"/api/pharmacy/{prescription_id}/dispense").status_code == 200
    assert auth_client.get("/api/state").get_json()["waitingList"][0]["status"] == "dispensed"


def test_prices_must_be_a_mapping(auth_client):
    prescription = send_to_pharmacy(auth_client)
    res = auth_client.post(f"/api/pharmacy/{prescription['id']}/bill", json={"prices": [20]})
    assert res.status_code == 400
    assert "prices" in res.get_json()["errors"]
