"""Voting exception classes."""


class VotingError(Exception):
    pass


class StageViolation(VotingError):
    """Raised when a voter tries to go back to an earlier workflow stage."""

    def __init__(self, recorded_stage: str) -> None:
        super().__init__(f"stage already advanced to {recorded_stage!r}")
        self.recorded_stage = recorded_stage


class ConstraintViolation(VotingError):
    """Raised when a ballot breaks the election's rules; the whole ballot is discarded."""


class DuplicateSubmission(VotingError):
    """Raised when a record already exists for the voter in the ballot's scope."""


class ConfigurationDisabled(VotingError):
    """Raised when an election does not enable the requested flow."""


class RateLimitExceeded(VotingError):
    """Raised when too many failed attempts were logged in the current window."""


class SignupError(VotingError):
    pass


class InvalidCode(SignupError):
    pass


class VoidCode(SignupError):
    pass


class CodeAlreadyUsed(SignupError):
    pass


class ConfirmationExpired(SignupError):
    pass


class NotificationFailure(VotingError):
    pass


class SmsDeliveryError(NotificationFailure):
    """Raised by SMS backends when a message could not be handed to the provider."""


__all__ = [
    "VotingError",
    "StageViolation",
    "ConstraintViolation",
    "DuplicateSubmission",
    "ConfigurationDisabled",
    "RateLimitExceeded",
    "SignupError",
    "InvalidCode",
    "VoidCode",
    "CodeAlreadyUsed",
    "ConfirmationExpired",
    "NotificationFailure",
    "SmsDeliveryError",
]
