"""Error taxonomy shared by the domain services and the HTTP layer.

Every error carries a stable ``code`` and an HTTP ``status_code``. The
``public_detail`` is what the client sees; the full message stays in the
server logs for the error types whose detail must not leak.
"""

from typing import Optional

from xtrafleet.domain.enums import TLAAction, TLAStatus, TransitionRejection


class XtraFleetError(Exception):
    """Base class for all expected (non-bug) failures."""

    status_code = 500
    code = "error"
    public_message: Optional[str] = None

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    @property
    def public_detail(self) -> str:
        return self.public_message or self.message


class Unauthenticated(XtraFleetError):
    """Missing or invalid credential."""

    status_code = 401
    code = "unauthenticated"
    public_message = "Authentication failed. Please log in again."


class Forbidden(XtraFleetError):
    """Authenticated actor lacks the role or permission for the request."""

    status_code = 403
    code = "forbidden"


class ValidationError(XtraFleetError):
    """Malformed input. Field-level detail may be returned to the client."""

    status_code = 422
    code = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        field_errors: Optional[dict[str, str]] = None,
    ):
        super().__init__(message, code=code)
        self.field_errors = field_errors or {}


class OutOfOrder(XtraFleetError):
    """A workflow precondition is not met yet (or no longer)."""

    status_code = 409
    code = "out_of_order"


class Conflict(XtraFleetError):
    """Optimistic-version mismatch or a one-time token already consumed."""

    status_code = 409
    code = "conflict"


class VersionConflict(Conflict):
    """The record changed since the caller read it."""

    def __init__(self, entity: str, entity_id: str, expected_version: int):
        super().__init__(
            f"{entity} {entity_id} was modified by someone else "
            f"(expected version {expected_version}). Reload and try again."
        )
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version


class NotFound(XtraFleetError):
    """Referenced record does not exist (or an invitation has expired)."""

    status_code = 404
    code = "not_found"


class ExternalServiceError(XtraFleetError):
    """Payment, storage or notification collaborator failure."""

    status_code = 502
    code = "external_service_error"
    public_message = "An external service is unavailable. Please try again later."


# ---------------------------------------------------------------------------
# TLA transition rejections
# ---------------------------------------------------------------------------


class InvalidTransitionError(XtraFleetError):
    """Raised by the TLA state machine when an action is not allowed.

    Use ``InvalidTransitionError.for_reason`` to get the subclass that
    matches the reason's place in the taxonomy.
    """

    def __init__(
        self,
        reason: TransitionRejection,
        message: str,
        *,
        action: Optional[TLAAction] = None,
        current_status: Optional[TLAStatus] = None,
    ):
        super().__init__(message, code=reason.value)
        self.reason = reason
        self.action = action
        self.current_status = current_status

    @classmethod
    def for_reason(
        cls,
        reason: TransitionRejection,
        message: str,
        *,
        action: Optional[TLAAction] = None,
        current_status: Optional[TLAStatus] = None,
    ) -> "InvalidTransitionError":
        error_cls = _REJECTION_CLASSES.get(reason, TransitionOutOfOrder)
        return error_cls(reason, message, action=action, current_status=current_status)


class TransitionForbidden(InvalidTransitionError, Forbidden):
    pass


class TransitionOutOfOrder(InvalidTransitionError, OutOfOrder):
    pass


class TransitionConflict(InvalidTransitionError, Conflict):
    pass


class TransitionInvalidInput(InvalidTransitionError, ValidationError):
    pass


_REJECTION_CLASSES: dict[TransitionRejection, type[InvalidTransitionError]] = {
    TransitionRejection.WRONG_PARTY: TransitionForbidden,
    TransitionRejection.OUT_OF_ORDER: TransitionOutOfOrder,
    TransitionRejection.ALREADY_SIGNED: TransitionOutOfOrder,
    TransitionRejection.PAYMENT_REQUIRED: TransitionOutOfOrder,
    TransitionRejection.ALREADY_TERMINAL: TransitionOutOfOrder,
    TransitionRejection.ALREADY_PAID: TransitionConflict,
    TransitionRejection.INVALID_INPUT: TransitionInvalidInput,
}
