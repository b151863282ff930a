"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Input rejected before anything is persisted (bad tenure, amount out of plan bounds)"""

    pass


class NotFoundError(ValidationError):
    """Referenced plan, application, installment or ledger entry does not exist"""

    pass


class StateConflictError(DomainException):
    """Operation is illegal in the aggregate's current state; state is left unchanged"""

    pass


class TransientCollaboratorError(DomainException):
    """A remote collaborator (datastore, notification sink, eligibility) failed"""

    pass


class NotificationDeliveryError(TransientCollaboratorError):
    """Notification sink rejected the request or was unreachable"""

    pass


class EligibilityServiceError(TransientCollaboratorError):
    """Eligibility/credit service returned an error or is unavailable"""

    pass


class ConcurrentUpdateError(TransientCollaboratorError):
    """Aggregate was modified by another writer since it was loaded"""

    pass
