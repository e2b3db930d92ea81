


# app/payroll/state_machine.py

class InvalidTransition(Exception):
    pass


ALLOWED = {
    "PENDING": {"SUBMITTED", "FAILED"},
    "SUBMITTED": {"CONFIRMED", "FAILED"},
    "CONFIRMED": set(),
    # FAILED -> PENDING only when an operator retries the payout
    "FAILED": {"PENDING"},
}

TERMINAL_STATUSES = ("CONFIRMED", "FAILED")


def assert_transition(old: str, new: str) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransition(f"Illegal payout transition: {old} -> {new}")


def assert_submitted_invariant(new_status: str, transaction_id: str | None) -> None:
    """
    Invariant: if payout is SUBMITTED, it MUST have a transaction id.
    """
    if new_status == "SUBMITTED" and not transaction_id:
        raise ValueError("Invariant violation: status=SUBMITTED requires transaction_id")
