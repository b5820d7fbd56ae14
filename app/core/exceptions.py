from fastapi import Request
from fastapi.responses import JSONResponse
import logging
from typing import Dict, Any, Optional
from app.core.logging import log_request_context
from app.core.security import get_client_ip
from app.services.error_notifier import get_error_notifier

logger = logging.getLogger(__name__)

class APIError(Exception):
    """Base API exception"""

    def __init__(self, message: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class AuthenticationError(APIError):
    """Authentication related errors"""

    def __init__(self, message: str = "Authentication required", details: Dict[str, Any] = None):
        super().__init__(message, 401, details)

class AuthorizationError(APIError):
    """Authorization related errors"""

    def __init__(self, message: str = "Access denied", details: Dict[str, Any] = None):
        super().__init__(message, 403, details)

class ValidationError(APIError):
    """Validation related errors"""

    def __init__(self, message: str = "Validation failed", details: Dict[str, Any] = None):
        super().__init__(message, 400, details)

class NotFoundError(APIError):
    """Missing record errors"""

    def __init__(self, message: str = "Not found", details: Dict[str, Any] = None):
        super().__init__(message, 404, details)

class ConflictError(APIError):
    """State conflict errors, the caller re-fetches and decides"""

    def __init__(self, message: str = "State conflict", details: Dict[str, Any] = None):
        super().__init__(message, 409, details)

class TransientError(APIError):
    """Infrastructure errors that are safe to retry with backoff"""

    def __init__(self, message: str = "Temporary failure, retry later", details: Dict[str, Any] = None):
        super().__init__(message, 503, details)

class ReconciliationError(APIError):
    """A multi-record change could not be completed nor rolled back. Needs manual repair."""

    def __init__(self, message: str = "Records left inconsistent", details: Dict[str, Any] = None):
        super().__init__(message, 500, details)


# Validation

class NoEventsSelectedError(ValidationError):
    def __init__(self):
        super().__init__("Select at least one detention event")

class IneligibleEventError(ValidationError):
    def __init__(self, event_id: str, reason: str):
        super().__init__(
            f"Detention event {event_id} cannot be invoiced: {reason}",
            {"event_id": event_id, "reason": reason}
        )


# Not found

class DetentionEventNotFoundError(NotFoundError):
    def __init__(self, event_id: str):
        super().__init__("Detention event not found", {"event_id": event_id})

class InvoiceNotFoundError(NotFoundError):
    def __init__(self, invoice_id: str):
        super().__init__("Invoice not found", {"invoice_id": invoice_id})

class InvitationNotFoundError(NotFoundError):
    def __init__(self, reference: str):
        super().__init__("Invitation not found", {"invitation": reference})

class FleetMemberNotFoundError(NotFoundError):
    def __init__(self, member_id: str):
        super().__init__("Fleet member not found", {"member_id": member_id})


# State conflicts

class InvalidStateTransitionError(ConflictError):
    def __init__(self, entity: str, entity_id: str, current: Any, requested: Any, guard: str):
        current = getattr(current, 'value', current)
        requested = getattr(requested, 'value', requested)
        super().__init__(
            f"Cannot move {entity} {entity_id} from '{current}' to '{requested}': {guard}",
            {
                "entity": entity,
                "id": entity_id,
                "current_state": current,
                "requested_state": requested,
                "guard": guard,
            }
        )
        self.current = current
        self.requested = requested
        self.guard = guard

class InvoiceNotDeletableError(ConflictError):
    def __init__(self, invoice_id: str, status: Any):
        status = getattr(status, 'value', status)
        super().__init__(
            f"Only draft invoices can be deleted (invoice is '{status}')",
            {"invoice_id": invoice_id, "status": status}
        )

class InvitationExpiredError(ConflictError):
    def __init__(self, invitation_id: str):
        super().__init__("Invitation has expired", {"invitation_id": invitation_id})

class InvitationAlreadyAcceptedError(ConflictError):
    def __init__(self, invitation_id: str):
        super().__init__("Invitation has already been accepted", {"invitation_id": invitation_id})

class InvitationCancelledError(ConflictError):
    def __init__(self, invitation_id: str):
        super().__init__("Invitation was cancelled", {"invitation_id": invitation_id})

class InvitationAlreadyPendingError(ConflictError):
    def __init__(self, email: str):
        super().__init__(f"An invitation for {email} is already pending", {"email": email})

class AlreadyFleetMemberError(ConflictError):
    def __init__(self, fleet_id: str, user_id: str):
        super().__init__(
            "User is already a member of this fleet",
            {"fleet_id": fleet_id, "user_id": user_id}
        )


# Transient

class DuplicateKeyError(TransientError):
    """Uniqueness constraint violated by a generated identifier"""

    def __init__(self, constraint: Optional[str] = None):
        super().__init__("Generated identifier already in use", {"constraint": constraint})
        self.constraint = constraint

class IdentifierExhaustedError(TransientError):
    def __init__(self, kind: str, attempts: int):
        super().__init__(
            f"Could not generate a unique {kind} after {attempts} attempts",
            {"kind": kind, "attempts": attempts}
        )


async def _alert(request: Request, exc: Exception, details: Dict[str, Any] = None, needs_reconciliation: bool = False):
    notifier = get_error_notifier()
    if notifier is None:
        return
    await notifier.send_error(
        exc,
        request_info={
            "method": request.method,
            "path": str(request.url.path),
            "client": get_client_ip(request)
        },
        details=details,
        needs_reconciliation=needs_reconciliation
    )


async def api_exception_handler(request: Request, exc: APIError):
    """Handle custom API exceptions with logging"""

    session_context = getattr(request.state, 'session_context', None)
    context = log_request_context(getattr(session_context, 'user_id', None))
    context.update({
        "error_type": exc.__class__.__name__,
        "status_code": exc.status_code,
        "path": str(request.url.path),
        "method": request.method
    })

    if isinstance(exc, ReconciliationError):
        logger.critical(f"API Error: {exc.message}", extra={"context": context})
        await _alert(request, exc, exc.details, needs_reconciliation=True)
    elif exc.status_code >= 500:
        logger.error(f"API Error: {exc.message}", extra={"context": context})
    else:
        logger.warning(f"API Error: {exc.message}", extra={"context": context})

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": True,
            "error_type": exc.__class__.__name__,
            "message": exc.message,
            "details": exc.details,
            "timestamp": context["timestamp"]
        }
    )

async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""

    context = log_request_context(path=str(request.url.path))
    context.update({
        "error_type": exc.__class__.__name__,
        "method": request.method
    })

    logger.error(f"Unexpected error: {str(exc)}", extra={"context": context}, exc_info=True)
    await _alert(request, exc)

    return JSONResponse(
        status_code=500,
        content={
            "error": True,
            "message": "Internal server error",
            "timestamp": context["timestamp"]
        }
    )
