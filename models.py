# models.py
from datetime import date, datetime
from flask_sqlalchemy import SQLAlchemy
import uuid

db = SQLAlchemy()


def new_id():
    # hex ids never contain "_", so composite public ids split cleanly
    return uuid.uuid4().hex


# database model for CLINIC table (one row per clinic, holds its settings)
class Clinic(db.Model):
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    clinic_name = db.Column(db.String(200), nullable=False)
    clinic_address = db.Column(db.String(400), nullable=False, default="")
    receipt_validity_days = db.Column(db.Integer, nullable=False, default=30)
    currency = db.Column(db.String(10), nullable=False, default="₹")
    logo_url = db.Column(db.String(400))
    logo_svg = db.Column(db.Text)
    tax_type = db.Column(db.String(40), nullable=False, default="GST")
    tax_percentage = db.Column(db.Float, nullable=False, default=5)
    appointment_fee = db.Column(db.Float, nullable=False, default=100)
    clinic_structure = db.Column(db.String(40), nullable=False, default="full_workflow")
    main_doctor_id = db.Column(db.String(32))

    def to_dict(self):
        return {
            "clinicName": self.clinic_name,
            "clinicAddress": self.clinic_address,
            "receiptValidityDays": self.receipt_validity_days,
            "currency": self.currency,
            "logoUrl": self.logo_url,
            "logoSvg": self.logo_svg,
            "taxType": self.tax_type,
            "taxPercentage": self.tax_percentage,
            "appointmentFee": self.appointment_fee,
            "clinicStructure": self.clinic_structure,
            "mainDoctorId": self.main_doctor_id,
        }


# database model for CLINIC_USER table (login account -> clinic mapping)
class ClinicUser(db.Model):
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    email = db.Column(db.String(200), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    clinic_id = db.Column(db.String(32), db.ForeignKey('clinic.id'))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)


# database model for DOCTOR table
class Doctor(db.Model):
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    clinic_id = db.Column(db.String(32), db.ForeignKey('clinic.id'), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    specialization = db.Column(db.String(120), nullable=False)
    avatar_url = db.Column(db.String(400), nullable=False)
    initials = db.Column(db.String(10), nullable=False)
    pincode = db.Column(db.String(4), nullable=False, default="1111")

    def to_dict(self):
        # pincode stays server side
        return {
            "id": self.id,
            "name": self.name,
            "specialization": self.specialization,
            "avatarUrl": self.avatar_url,
            "initials": self.initials,
        }


# database model for PATIENT table
class Patient(db.Model):
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    clinic_id = db.Column(db.String(32), db.ForeignKey('clinic.id'), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(20), nullable=False)
    gender = db.Column(db.String(10), nullable=False)
    age = db.Column(db.Integer, nullable=False)
    avatar_url = db.Column(db.String(400), nullable=False)
    history = db.relationship(
        'PatientHistory', order_by='PatientHistory.id', lazy=True, cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "gender": self.gender,
            "age": self.age,
            "avatarUrl": self.avatar_url,
            "history": [h.to_dict() for h in self.history],
        }


# database model for PATIENT_HISTORY table (ordered visit notes)
class PatientHistory(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.String(32), db.ForeignKey('patient.id'), nullable=False, index=True)
    date = db.Column(db.DateTime, nullable=False, default=datetime.now)
    doctor_name = db.Column(db.String(120), nullable=False)
    notes = db.Column(db.Text, nullable=False)

    def to_dict(self):
        return {"date": self.date.isoformat(), "doctorName": self.doctor_name, "notes": self.notes}


# database model for WAITING_ENTRY table (one visit of a patient to a doctor)
class WaitingEntry(db.Model):
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    clinic_id = db.Column(db.String(32), db.ForeignKey('clinic.id'), nullable=False, index=True)
    patient_id = db.Column(db.String(32), db.ForeignKey('patient.id'), nullable=False)
    patient_name = db.Column(db.String(120), nullable=False)
    gender = db.Column(db.String(10), nullable=False)
    age = db.Column(db.Integer, nullable=False)
    avatar_url = db.Column(db.String(400), nullable=False)
    doctor_id = db.Column(db.String(32), nullable=False)
    doctor_name = db.Column(db.String(120), nullable=False)
    status = db.Column(db.String(30), nullable=False, default="waiting")
    time = db.Column(db.String(5), nullable=False)
    visit_date = db.Column(db.Date, nullable=False, default=date.today, index=True)
    advice = db.Column(db.Text)
    prescription = db.relationship('Prescription', uselist=False, lazy=True)

    def to_dict(self):
        return {
            "id": self.id,
            "patientId": self.patient_id,
            "patientName": self.patient_name,
            "gender": self.gender,
            "age": self.age,
            "avatarUrl": self.avatar_url,
            "doctorId": self.doctor_id,
            "doctorName": self.doctor_name,
            "status": self.status,
            "time": self.time,
            "visitDate": self.visit_date.isoformat(),
            "advice": self.advice,
            "prescriptionId": self.prescription.id if self.prescription else None,
        }


# database model for PRESCRIPTION table (pharmacy queue)
class Prescription(db.Model):
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    clinic_id = db.Column(db.String(32), db.ForeignKey('clinic.id'), nullable=False, index=True)
    waiting_entry_id = db.Column(db.String(32), db.ForeignKey('waiting_entry.id'), unique=True, nullable=False)
    patient_name = db.Column(db.String(120), nullable=False)
    doctor = db.Column(db.String(120), nullable=False)
    time = db.Column(db.String(5), nullable=False)
    items = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(db.String(20), nullable=False, default="pending")
    advice = db.Column(db.Text)
    visit_date = db.Column(db.Date, nullable=False, default=date.today, index=True)
    bill_details = db.Column(db.JSON)
    due_date = db.Column(db.Date)

    def to_dict(self):
        return {
            "id": self.id,
            "waitingPatientId": self.waiting_entry_id,
            "patientName": self.patient_name,
            "doctor": self.doctor,
            "time": self.time,
            "items": list(self.items or []),
            "status": self.status,
            "advice": self.advice,
            "visitDate": self.visit_date.isoformat(),
            "billDetails": self.bill_details,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
        }


# database model for NOTIFICATION table (reception call-outs)
class Notification(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    clinic_id = db.Column(db.String(32), db.ForeignKey('clinic.id'), nullable=False, index=True)
    message = db.Column(db.String(400), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)

    def to_dict(self):
        return {"id": self.id, "message": self.message}
