class EngineError(Exception):
    """Failure that ends a request before a job produces a result."""

    kind = "infrastructure"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(EngineError):
    kind = "validation"
    status_code = 400


class EngineBusy(EngineError):
    kind = "busy"
    status_code = 503


class WorkspaceError(EngineError):
    kind = "infrastructure"
    status_code = 500


class InvalidTransition(Exception):
    pass
