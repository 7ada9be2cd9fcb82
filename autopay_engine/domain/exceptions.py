"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Input is malformed or missing; rejected before any external call"""

    pass


class ChainUnavailableError(DomainException):
    """Chain adapter call failed or timed out (transient)"""

    pass


class InsufficientGasError(DomainException):
    """Gas top-up was required but could not be completed"""

    pass


class RouteUnavailableError(DomainException):
    """No quote could be obtained from any venue"""

    pass


class RiskBlockedError(DomainException):
    """Transfer refused because the risk scan returned a high level"""

    def __init__(self, message: str, flags: tuple[str, ...] = ()):
        super().__init__(message)
        self.flags = flags


class SimulationFailure(DomainException):
    """A route step reverted or errored on-chain"""

    def __init__(self, message: str, step_index: int | None = None):
        super().__init__(message)
        self.step_index = step_index


class InvalidTransitionError(DomainException):
    """Execution state machine was asked for a transition it does not allow"""

    pass


class StepSchemaError(DomainException):
    """Persisted route steps could not be decoded"""

    pass


class SubscriptionNotFoundError(DomainException):
    """No subscription exists with the given id"""

    pass


class ExecutionCancelled(DomainException):
    """Subscription was deactivated while its run was in flight"""

    pass
