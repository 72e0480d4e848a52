"""Error taxonomy for the booking workflow.

Services raise these; routers translate them into HTTP responses using the
``status_code`` carried by each class.
"""


class WorkflowError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PreconditionError(WorkflowError):
    """Wrong status for the action, missing or inconsistent input."""

    status_code = 400


class InvalidActionError(WorkflowError):
    status_code = 400


class NotFoundError(WorkflowError):
    status_code = 404


class ConflictError(WorkflowError):
    """Overlapping bookings, duplicate invoices, invoice number collisions."""

    status_code = 409
