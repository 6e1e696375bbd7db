import uuid


class EngineError(Exception):
    """Base class for errors raised by the availability and booking engine."""
    status_code = 400
    code = "EngineError"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        body = {"error": self.code, "detail": self.message}
        if self.context:
            body["context"] = {k: str(v) if isinstance(v, uuid.UUID) else v for k, v in self.context.items()}
        return body


class ValidationError(EngineError):
    """Malformed input (bad rule, bad range). Never persisted."""
    status_code = 422
    code = "ValidationError"


class SlotUnavailable(EngineError):
    """Capacity exceeded or outside availability at write time. Caller should re-fetch the grid."""
    status_code = 409
    code = "SlotUnavailable"


class NotFound(EngineError):
    status_code = 404
    code = "NotFound"

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found", entity=entity, id=entity_id)


class TenantMismatch(EngineError):
    status_code = 403
    code = "TenantMismatch"


class InvalidTransition(EngineError):
    status_code = 409
    code = "InvalidTransition"
