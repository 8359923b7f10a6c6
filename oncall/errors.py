from oncall.validator import Violation


class SchedulingError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidInputError(SchedulingError):
    status_code = 400


class NotFoundError(SchedulingError):
    status_code = 404


class ConflictError(SchedulingError):
    """
    An expected, user-facing rule violation. The message is shown verbatim.
    """

    status_code = 409

    def __init__(self, message: str, violation: Violation | None = None) -> None:
        self.violation = violation
        super().__init__(message)


class IntegrityError(SchedulingError):
    status_code = 500
