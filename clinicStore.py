# clinicStore.py
import csv
import io
from collections import namedtuple
from datetime import date, datetime, time
from types import MappingProxyType

from flask import current_app
from sqlalchemy import or_

from models import db, Clinic, Doctor, Patient, PatientHistory, WaitingEntry, Prescription, Notification
from appUtils import (
    TAX_TYPES, ValidationError, initials_for, avatar_url_for, clock_time,
    validate_new_pin, parse_amount,
)
from billingService import compute_bill_details
from statusWorkflow import (
    PatientStatus, PrescriptionStatus, ClinicStructure, PRESCRIPTION_STATUSES,
    DOCTOR_QUEUE_STATUSES, InvalidTransition, next_status,
)


class NotFoundError(Exception):
    pass

class AlreadyWaitingError(Exception):
    pass

class ConsultationInProgressError(Exception):
    pass

class MainDoctorMissingError(Exception):
    pass


_SnapshotBase = namedtuple(
    "ClinicSnapshot", ["settings", "patients", "doctors", "waiting_list", "pharmacy_queue", "notifications"]
)


class ClinicSnapshot(_SnapshotBase):
    """Read-only view of a clinic at one point in time."""

    def as_json(self):
        return {
            "settings": dict(self.settings) if self.settings is not None else None,
            "patients": [dict(p) for p in self.patients],
            "doctors": [dict(d) for d in self.doctors],
            "waitingList": [dict(w) for w in self.waiting_list],
            "pharmacyQueue": [dict(p) for p in self.pharmacy_queue],
            "notifications": [dict(n) for n in self.notifications],
        }


def _frozen(rows):
    return tuple(MappingProxyType(r.to_dict()) for r in rows)


class ClinicStore:
    """
    All reads and writes for one clinic.

    One store is created per request and handed to the code that needs it;
    every mutator commits before returning, so a later ``snapshot()`` sees
    the change. Writes are last-write-wins.
    """

    def __init__(self, clinic_id, today=None):
        self.clinic_id = clinic_id
        self._today = today

    @property
    def today(self):
        return self._today or date.today()

    def _commit(self, action):
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            current_app.logger.exception(f"[{action}] commit failed for clinic {self.clinic_id}")
            raise

    # ---------- reads ----------

    @property
    def settings(self):
        clinic = db.session.get(Clinic, self.clinic_id)
        if clinic is None:
            raise NotFoundError("Clinic not found.")
        return clinic

    def snapshot(self):
        clinic = db.session.get(Clinic, self.clinic_id)
        return ClinicSnapshot(
            settings=MappingProxyType(clinic.to_dict()) if clinic else None,
            patients=_frozen(Patient.query.filter_by(clinic_id=self.clinic_id).order_by(Patient.name).all()),
            doctors=_frozen(Doctor.query.filter_by(clinic_id=self.clinic_id).order_by(Doctor.name).all()),
            waiting_list=_frozen(self.waiting_list()),
            pharmacy_queue=_frozen(self.pharmacy_queue()),
            notifications=_frozen(self.notifications()),
        )

    def get_patient(self, patient_id):
        patient = Patient.query.filter_by(id=patient_id, clinic_id=self.clinic_id).first()
        if not patient:
            raise NotFoundError("Patient not found.")
        return patient

    def search_patients(self, term=""):
        query = Patient.query.filter_by(clinic_id=self.clinic_id)
        term = (term or "").strip()
        if term:
            query = query.filter(or_(Patient.name.ilike(f"%{term}%"), Patient.phone.contains(term)))
        return query.order_by(Patient.name).all()

    def todays_patients(self):
        # registered today = first history entry dated today
        patients = []
        for patient in Patient.query.filter_by(clinic_id=self.clinic_id).all():
            if patient.history and patient.history[0].date.date() == self.today:
                patients.append(patient)
        return patients

    def get_doctor(self, doctor_id):
        doctor = Doctor.query.filter_by(id=doctor_id, clinic_id=self.clinic_id).first()
        if not doctor:
            raise NotFoundError("Doctor not found.")
        return doctor

    def list_doctors(self):
        return Doctor.query.filter_by(clinic_id=self.clinic_id).order_by(Doctor.name).all()

    def get_entry(self, entry_id):
        entry = WaitingEntry.query.filter_by(id=entry_id, clinic_id=self.clinic_id).first()
        if not entry:
            raise NotFoundError("Waiting list entry not found.")
        return entry

    def waiting_list(self):
        return (WaitingEntry.query
                .filter_by(clinic_id=self.clinic_id, visit_date=self.today)
                .order_by(WaitingEntry.time, WaitingEntry.id)
                .all())

    def doctor_queue(self, doctor_id):
        statuses = [s.value for s in DOCTOR_QUEUE_STATUSES]
        return [e for e in self.waiting_list() if e.doctor_id == doctor_id and e.status in statuses]

    def get_prescription(self, prescription_id):
        prescription = Prescription.query.filter_by(id=prescription_id, clinic_id=self.clinic_id).first()
        if not prescription:
            raise NotFoundError("Prescription not found.")
        return prescription

    def pharmacy_queue(self):
        # no-pharmacy clinics bill prescribed visits at the front desk
        statuses = [PatientStatus.SENT_TO_PHARMACY.value]
        if self.settings.clinic_structure == ClinicStructure.NO_PHARMACY.value:
            statuses.append(PatientStatus.PRESCRIBED.value)
        return (Prescription.query
                .join(WaitingEntry, Prescription.waiting_entry_id == WaitingEntry.id)
                .filter(Prescription.clinic_id == self.clinic_id,
                        Prescription.visit_date == self.today,
                        Prescription.status == PrescriptionStatus.PENDING.value,
                        WaitingEntry.status.in_(statuses))
                .order_by(Prescription.time, Prescription.id)
                .all())

    def _start_of_today(self):
        return datetime.combine(self.today, time.min)

    def notifications(self):
        return (Notification.query
                .filter(Notification.clinic_id == self.clinic_id,
                        Notification.created_at >= self._start_of_today())
                .order_by(Notification.id)
                .all())

    # ---------- patients ----------

    def add_patient(self, name, phone, age, gender):
        patient = Patient(
            clinic_id=self.clinic_id,
            name=name,
            phone=phone,
            age=age,
            gender=gender,
            avatar_url=avatar_url_for(name),
        )
        db.session.add(patient)
        self._commit("add_patient")
        current_app.logger.debug(f"[add_patient] Registered {patient.id} ({name}) for clinic {self.clinic_id}")
        return patient

    def _add_history(self, patient_id, doctor_name, notes):
        db.session.add(PatientHistory(patient_id=patient_id, doctor_name=doctor_name, notes=notes,
                                      date=datetime.now()))

    # ---------- doctors ----------

    def add_doctor(self, name, specialization):
        doctor = Doctor(
            clinic_id=self.clinic_id,
            name=name,
            specialization=specialization,
            pincode="1111",
            initials=initials_for(name),
            avatar_url=avatar_url_for(name),
        )
        db.session.add(doctor)
        self._commit("add_doctor")
        return doctor

    def update_doctor(self, doctor_id, name=None, specialization=None):
        doctor = self.get_doctor(doctor_id)
        if name and name != doctor.name:
            doctor.name = name
            doctor.initials = initials_for(name)
            doctor.avatar_url = avatar_url_for(name)
        if specialization:
            doctor.specialization = specialization
        self._commit("update_doctor")
        return doctor

    def delete_doctor(self, doctor_id):
        doctor = self.get_doctor(doctor_id)
        db.session.delete(doctor)
        clinic = self.settings
        if clinic.main_doctor_id == doctor_id:
            clinic.main_doctor_id = None
        self._commit("delete_doctor")

    def verify_doctor_pin(self, doctor_id, pin):
        try:
            doctor = self.get_doctor(doctor_id)
        except NotFoundError:
            return False
        return doctor.pincode == pin

    def change_doctor_pin(self, doctor_id, current_pin, new_pin, confirm_pin):
        validate_new_pin(new_pin, confirm_pin)
        if not self.verify_doctor_pin(doctor_id, current_pin):
            raise ValidationError({"currentPin": "Your current PIN is incorrect."})
        doctor = self.get_doctor(doctor_id)
        doctor.pincode = new_pin
        self._commit("change_doctor_pin")

    def export_doctors_csv(self):
        doctors = self.list_doctors()
        if not doctors:
            return None
        out = io.StringIO()
        writer = csv.DictWriter(out, fieldnames=["id", "name", "specialization", "initials", "avatarUrl"])
        writer.writeheader()
        for d in doctors:
            writer.writerow(d.to_dict())
        return out.getvalue()

    # ---------- waiting room ----------

    def add_to_waiting_list(self, patient_id, doctor_id, status=PatientStatus.WAITING):
        patient = self.get_patient(patient_id)
        doctor = self.get_doctor(doctor_id)

        active = (WaitingEntry.query
                  .filter_by(clinic_id=self.clinic_id, patient_id=patient.id, visit_date=self.today)
                  .filter(WaitingEntry.status != PatientStatus.DISPENSED.value)
                  .first())
        if active:
            raise AlreadyWaitingError(f"{patient.name} is still in the active clinic queue.")

        entry = WaitingEntry(
            clinic_id=self.clinic_id,
            patient_id=patient.id,
            patient_name=patient.name,
            gender=patient.gender,
            age=patient.age,
            avatar_url=patient.avatar_url,
            doctor_id=doctor.id,
            doctor_name=doctor.name,
            status=PatientStatus(status).value,
            time=clock_time(),
            visit_date=self.today,
        )
        db.session.add(entry)
        self._add_history(patient.id, doctor.name, "Added to waiting list for consultation.")
        self._commit("add_to_waiting_list")
        current_app.logger.debug(f"[add_to_waiting_list] {patient.name} waiting for Dr. {doctor.name}")
        return entry

    def advance_status(self, entry_id, new_status, items=None, advice=None, bill_details=None, due_date=None):
        """
        Move a waiting entry forward.

        Moving to ``prescribed`` or ``sent_to_pharmacy`` records the visit's
        prescription from the entry's patient and doctor and the given items.
        Returns the prescription for those moves, else None.
        """
        entry = self.get_entry(entry_id)
        target = next_status(entry.status, new_status)
        self._guard_single_consultation(entry, target)

        prescription = None
        if target in PRESCRIPTION_STATUSES:
            prescription = Prescription.query.filter_by(waiting_entry_id=entry.id).first()
            if prescription is None:
                if not items:
                    raise ValidationError({"items": "Add at least one item to the prescription."})
                prescription = Prescription(
                    clinic_id=self.clinic_id,
                    waiting_entry_id=entry.id,
                    patient_name=entry.patient_name,
                    doctor=entry.doctor_name,
                    time=clock_time(),
                    items=list(items),
                    advice=advice,
                    status=PrescriptionStatus.PENDING.value,
                    visit_date=self.today,
                    bill_details=bill_details,
                    due_date=due_date,
                )
                db.session.add(prescription)
                entry.advice = advice
                note = f"Consultation complete. Prescription: {', '.join(items)}."
                if advice:
                    note += f" Advice: {advice}"
                self._add_history(entry.patient_id, entry.doctor_name, note)
            elif items and list(items) != list(prescription.items or []):
                # the doctor revised the list before it left the room
                if prescription.status != PrescriptionStatus.PENDING.value:
                    raise ValidationError({"items": "A dispensed prescription cannot be changed."})
                prescription.items = list(items)
                if advice:
                    prescription.advice = advice
                    entry.advice = advice
                current_app.logger.debug(f"[advance_status] Updated items for prescription {prescription.id}")

        entry.status = target.value
        if target == PatientStatus.CALLED:
            self._notify(f"Dr. {entry.doctor_name} is calling for {entry.patient_name}.")
        elif target == PatientStatus.SENT_TO_PHARMACY:
            self._notify(f"Prescription for {entry.patient_name} sent to the pharmacy.")
        elif target == PatientStatus.DISPENSED:
            if prescription is None:
                prescription = Prescription.query.filter_by(waiting_entry_id=entry.id).first()
            if prescription is not None:
                prescription.status = PrescriptionStatus.DISPENSED.value

        self._commit("advance_status")
        current_app.logger.debug(f"[advance_status] {entry.patient_name}: -> {target.value}")
        return prescription

    def _guard_single_consultation(self, entry, target):
        if target != PatientStatus.IN_CONSULT:
            return
        if self.settings.clinic_structure != ClinicStructure.ONE_MAN.value:
            return
        busy = [e for e in self.waiting_list()
                if e.status == PatientStatus.IN_CONSULT.value and e.id != entry.id]
        if busy:
            raise ConsultationInProgressError(
                "Please finish the current consultation before starting a new one."
            )

    # ---------- pharmacy ----------

    def attach_bill(self, prescription_id, bill_details, due_date):
        prescription = self.get_prescription(prescription_id)
        prescription.bill_details = bill_details
        prescription.due_date = due_date
        self._commit("attach_bill")
        return prescription

    def mark_dispensed(self, prescription_id):
        """Flip the prescription (and its visit) to dispensed. No stock is touched."""
        prescription = self.get_prescription(prescription_id)
        if prescription.status == PrescriptionStatus.DISPENSED.value:
            raise InvalidTransition(prescription.status, PrescriptionStatus.DISPENSED.value)
        entry = db.session.get(WaitingEntry, prescription.waiting_entry_id)
        if entry is not None and entry.status != PatientStatus.DISPENSED.value:
            entry.status = next_status(entry.status, PatientStatus.DISPENSED).value
        prescription.status = PrescriptionStatus.DISPENSED.value
        self._commit("mark_dispensed")
        current_app.logger.debug(f"[mark_dispensed] {prescription.patient_name} marked as done")
        return prescription

    # ---------- one-man mode ----------

    def main_doctor(self):
        clinic = self.settings
        if not clinic.main_doctor_id:
            raise MainDoctorMissingError('Please go to Settings and select a "Main Doctor" to use this dashboard.')
        return self.get_doctor(clinic.main_doctor_id)

    def active_consultation(self):
        for entry in self.waiting_list():
            if entry.status == PatientStatus.IN_CONSULT.value:
                return entry
        return None

    def start_consultation(self, patient_id):
        doctor = self.main_doctor()
        if self.active_consultation() is not None:
            raise ConsultationInProgressError(
                "Please finish the current consultation before starting a new one."
            )
        return self.add_to_waiting_list(patient_id, doctor.id, status=PatientStatus.IN_CONSULT)

    def cancel_consultation(self, entry_id):
        entry = self.get_entry(entry_id)
        if entry.status != PatientStatus.IN_CONSULT.value:
            raise InvalidTransition(entry.status, "cancelled")
        db.session.delete(entry)
        self._commit("cancel_consultation")

    def finish_consultation(self, entry_id, priced_items, advice=None, due_date=None,
                            include_appointment_fee=True, apply_round_off=True):
        """Bill the consultation from the billing pad prices and close the visit."""
        bill = compute_bill_details(priced_items, self.settings, include_appointment_fee, apply_round_off)
        prescription = self.advance_status(
            entry_id, PatientStatus.PRESCRIBED,
            items=[row["item"] for row in priced_items],
            advice=advice,
            bill_details=bill,
            due_date=due_date,
        )
        return self.advance_status(entry_id, PatientStatus.DISPENSED) or prescription

    # ---------- notifications ----------

    def _notify(self, message):
        # call-outs only matter on the day they were made
        (Notification.query
         .filter(Notification.clinic_id == self.clinic_id,
                 Notification.created_at < self._start_of_today())
         .delete(synchronize_session=False))
        db.session.add(Notification(clinic_id=self.clinic_id, message=message))

    def dismiss_notification(self, notification_id):
        notification = Notification.query.filter_by(id=notification_id, clinic_id=self.clinic_id).first()
        if notification:
            db.session.delete(notification)
            self._commit("dismiss_notification")

    # ---------- settings ----------

    def update_profile(self, clinic_name=None, clinic_address=None, logo_svg=None):
        clinic = self.settings
        if clinic_name is not None:
            if len(clinic_name.strip()) < 2:
                raise ValidationError({"clinicName": "Clinic name must be at least 2 characters."})
            clinic.clinic_name = clinic_name.strip()
        if clinic_address is not None:
            clinic.clinic_address = clinic_address.strip()
        if logo_svg is not None:
            clinic.logo_svg = logo_svg
        self._commit("update_profile")
        return clinic

    def update_settings(self, data):
        clinic = self.settings
        errors = {}
        if "clinicStructure" in data:
            try:
                clinic.clinic_structure = ClinicStructure(data["clinicStructure"]).value
            except ValueError:
                errors["clinicStructure"] = "Unknown clinic structure."
        if "taxType" in data:
            if data["taxType"] in TAX_TYPES:
                clinic.tax_type = data["taxType"]
            else:
                errors["taxType"] = "Tax type must be one of " + ", ".join(TAX_TYPES) + "."
        for key, attr in (("taxPercentage", "tax_percentage"), ("appointmentFee", "appointment_fee")):
            if key in data:
                value = parse_amount(data[key])
                if value is None:
                    errors[key] = "Must be a positive number."
                else:
                    setattr(clinic, attr, value)
        if "receiptValidityDays" in data:
            try:
                days = int(data["receiptValidityDays"])
                if days < 1:
                    raise ValueError
                clinic.receipt_validity_days = days
            except (TypeError, ValueError):
                errors["receiptValidityDays"] = "Validity must be at least one day."
        if "mainDoctorId" in data:
            doctor_id = data["mainDoctorId"] or None
            if doctor_id and not Doctor.query.filter_by(id=doctor_id, clinic_id=self.clinic_id).first():
                errors["mainDoctorId"] = "Doctor not found."
            else:
                clinic.main_doctor_id = doctor_id
        for key, attr in (("currency", "currency"), ("logoUrl", "logo_url")):
            if key in data:
                setattr(clinic, attr, data[key])
        if errors:
            db.session.rollback()
            raise ValidationError(errors)
        for key, attr in (("clinicName", "clinic_name"), ("clinicAddress", "clinic_address"), ("logoSvg", "logo_svg")):
            if key in data:
                setattr(clinic, attr, data[key])
        self._commit("update_settings")
        return clinic
