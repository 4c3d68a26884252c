# Typed failures raised by the session services. Routes translate
# them into HTTP responses; the client poller decides which are terminal.


class AuthError(Exception):
    status_code = 400

    def __init__(self, message: str = "", session_id: str | None = None):
        super().__init__(message or self.__class__.__name__)
        self.session_id = session_id


class StoreUnavailable(AuthError):
    status_code = 503


class SessionNotFound(AuthError):
    status_code = 404


class SessionExpired(AuthError):
    status_code = 410


class SignatureInvalid(AuthError):
    status_code = 401


class InvalidTransition(AuthError):
    status_code = 409


class InvalidRequest(AuthError):
    status_code = 422


class NetworkError(Exception):
    """Transient client-side failure talking to the identity server."""
