# statusWorkflow.py
"""
Visit status state machine.

A waiting entry moves forward only:

    waiting -> called -> in_consult -> prescribed -> sent_to_pharmacy -> dispensed

Steps may be skipped forward where the clinic workflow does so (a one-man
consultation starts directly in_consult, a no-pharmacy clinic goes from
prescribed straight to dispensed). Nothing moves backward.
"""
import logging
from enum import Enum

logger = logging.getLogger(__name__)


class PatientStatus(str, Enum):
    WAITING = "waiting"
    CALLED = "called"
    IN_CONSULT = "in_consult"
    PRESCRIBED = "prescribed"
    SENT_TO_PHARMACY = "sent_to_pharmacy"
    DISPENSED = "dispensed"


class PrescriptionStatus(str, Enum):
    PENDING = "pending"
    DISPENSED = "dispensed"


class ClinicStructure(str, Enum):
    FULL_WORKFLOW = "full_workflow"
    NO_PHARMACY = "no_pharmacy"
    ONE_MAN = "one_man"


TRANSITIONS = {
    PatientStatus.WAITING: {PatientStatus.CALLED, PatientStatus.IN_CONSULT},
    PatientStatus.CALLED: {PatientStatus.IN_CONSULT},
    PatientStatus.IN_CONSULT: {PatientStatus.PRESCRIBED, PatientStatus.SENT_TO_PHARMACY},
    PatientStatus.PRESCRIBED: {PatientStatus.SENT_TO_PHARMACY, PatientStatus.DISPENSED},
    PatientStatus.SENT_TO_PHARMACY: {PatientStatus.DISPENSED},
    PatientStatus.DISPENSED: set(),
}

# statuses that produce the visit's prescription
PRESCRIPTION_STATUSES = {PatientStatus.PRESCRIBED, PatientStatus.SENT_TO_PHARMACY}

# statuses the doctor dashboard shows
DOCTOR_QUEUE_STATUSES = {PatientStatus.CALLED, PatientStatus.IN_CONSULT, PatientStatus.PRESCRIBED}


class InvalidTransition(Exception):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move a visit from '{current}' to '{target}'.")


def parse_status(value):
    try:
        return PatientStatus(value)
    except ValueError:
        raise InvalidTransition("unknown", value)


def next_status(current, target):
    """Return ``target`` as a PatientStatus if the move is allowed, else raise InvalidTransition."""
    current = PatientStatus(current)
    target = parse_status(target)
    if target not in TRANSITIONS[current]:
        logger.debug("[next_status] rejected %s -> %s", current.value, target.value)
        raise InvalidTransition(current.value, target.value)
    return target


def is_terminal(status):
    return not TRANSITIONS[PatientStatus(status)]
