"""Error taxonomy shared by the signing, wallet and sharing services."""


class SignaturaError(Exception):
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(SignaturaError):
    """Malformed or missing fields on issuance or grant creation."""

    status_code = 422


class SigningError(SignaturaError):
    """A cryptographic operation failed, e.g. bad key material."""

    status_code = 400


class NotFoundError(SignaturaError):
    status_code = 404


class ExpiredError(SignaturaError):
    # Reported like a missing record so callers cannot guess which tokens exist.
    status_code = 404


class PermissionDeniedError(SignaturaError):
    status_code = 403


class StateTransitionError(SignaturaError):
    status_code = 409


class InvalidOtpError(SignaturaError):
    status_code = 400


class TooManyAttemptsError(SignaturaError):
    status_code = 429
