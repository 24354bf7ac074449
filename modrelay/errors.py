from typing import Optional


class RelayError(RuntimeError):
    pass


class ValidationError(RelayError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFound(RelayError):
    pass


class InvalidTransition(RelayError):
    pass


class StaleInteraction(RelayError):
    pass


class Forbidden(RelayError):
    pass


class GatewayFailure(RelayError):
    pass
