"""Custom exceptions for the quotation tool."""


class QuotationToolError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        rv['error'] = type(self).__name__
        return rv


class BusinessLogicError(QuotationToolError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(QuotationToolError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class UnauthorizedError(QuotationToolError):
    """Raised when a user lacks permission for an action."""
    def __init__(self, message="Unauthorized access"):
        super().__init__(message, 403)


# Pricing / validation

class InvalidLineItem(BusinessLogicError):
    """Raised by the calculator when a line item breaks its input contract."""
    def __init__(self, index, field, message):
        self.index = index
        self.field = field
        super().__init__(
            f"Line item {index}: {message}",
            payload={'index': index, 'field': field},
        )


class ValidationFailed(BusinessLogicError):
    """A quotation could not be sent because validation reported errors."""
    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__(
            'Quotation is not valid: ' + '; '.join(e.message for e in self.errors),
            status_code=422,
            payload={'errors': [e.to_dict() for e in self.errors]},
        )


class ItemsFrozen(BusinessLogicError):
    """Line items can only be replaced while the quotation is a draft."""
    def __init__(self, status):
        self.current_status = status
        super().__init__(
            f"Items cannot be modified once the quotation is {status}",
            status_code=409,
            payload={'current_status': status},
        )


# Status workflow

class TransitionError(BusinessLogicError):
    """Base class for rejected status transitions."""
    def __init__(self, message, current_status, requested_status, status_code=409, payload=None):
        self.current_status = current_status
        self.requested_status = requested_status
        data = dict(payload or ())
        data.update({'current_status': current_status, 'requested_status': requested_status})
        super().__init__(message, status_code=status_code, payload=data)


class IllegalTransition(TransitionError):
    def __init__(self, current_status, requested_status):
        super().__init__(
            f"Cannot change status from {current_status} to {requested_status}",
            current_status, requested_status,
        )


class TerminalState(TransitionError):
    def __init__(self, current_status, requested_status):
        super().__init__(
            f"Quotation is {current_status} and cannot change status anymore",
            current_status, requested_status,
        )


class NotYetExpired(TransitionError):
    def __init__(self, current_status, requested_status, valid_until):
        self.valid_until = valid_until
        super().__init__(
            f"Quotation is valid until {valid_until} and cannot expire yet",
            current_status, requested_status,
            payload={'valid_until': str(valid_until)},
        )


class MissingReason(TransitionError):
    def __init__(self, current_status, requested_status):
        super().__init__(
            'A rejection reason is required',
            current_status, requested_status,
            status_code=400,
            payload={'field': 'reason'},
        )


# Persistence

class ConcurrentUpdateError(QuotationToolError):
    """Raised when the stored version no longer matches the loaded one."""
    def __init__(self, quotation_id, expected_version=None, actual_version=None):
        self.quotation_id = quotation_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Quotation {quotation_id} was modified by another request. Reload and try again.",
            409,
            {'quotation_id': quotation_id, 'expected_version': expected_version,
             'actual_version': actual_version},
        )


# Notifications

class UnknownPreferenceKey(BusinessLogicError):
    """A notification preference key is not a known channel or event."""
    def __init__(self, kind, key):
        self.kind = kind
        self.key = key
        super().__init__(f"Unknown notification {kind}: {key}", payload={kind: key})


class UnknownTemplateEvent(BusinessLogicError):
    """No notification template exists for the event."""
    def __init__(self, event):
        self.event = event
        super().__init__(f"No notification template for event: {event}", payload={'event': event})


class TemplateVariableError(BusinessLogicError):
    """A template uses variables that are not provided or not allowed."""
    def __init__(self, variables):
        self.variables = sorted(variables)
        super().__init__(
            f"Template uses undefined variables: {', '.join(self.variables)}",
            payload={'variables': self.variables},
        )
