import pytest

from statusWorkflow import InvalidTransition, PatientStatus, is_terminal, next_status


@pytest.mark.parametrize("current,target", [
    ("waiting", "called"),
    ("waiting", "in_consult"),
    ("called", "in_consult"),
    ("in_consult", "prescribed"),
    ("in_consult", "sent_to_pharmacy"),
    ("prescribed", "sent_to_pharmacy"),
    ("prescribed", "dispensed"),
    ("sent_to_pharmacy", "dispensed"),
])
def test_forward_moves_are_allowed(current, target):
    assert next_status(current, target) == PatientStatus(target)


@pytest.mark.parametrize("current,target", [
    ("called", "waiting"),
    ("in_consult", "called"),
    ("dispensed", "waiting"),
    ("sent_to_pharmacy", "prescribed"),
    ("waiting", "dispensed"),
    ("waiting", "waiting"),
])
def test_backward_and_skipping_moves_are_rejected(current, target):
    with pytest.raises(InvalidTransition) as exc:
        next_status(current, target)
    assert exc.value.current == current
    assert exc.value.target == target


def test_unknown_status_is_rejected():
    with pytest.raises(InvalidTransition):
        next_status("waiting", "teleported")


def test_dispensed_is_the_only_terminal_status():
    assert [s for s in PatientStatus if is_terminal(s)] == [PatientStatus.DISPENSED]
