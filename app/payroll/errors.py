from __future__ import annotations


class PayrollError(Exception):
    pass


class RunAlreadyActive(PayrollError):
    def __init__(self, run_id: str):
        super().__init__(f"Payroll run {run_id} is already executing")
        self.run_id = run_id


class RunStopped(PayrollError):
    pass


class RunNotFound(PayrollError):
    def __init__(self, run_id: str):
        super().__init__(f"Payroll run {run_id} not found")
        self.run_id = run_id
