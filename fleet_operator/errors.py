"""
Domain errors raised during a reconciliation pass.

Every error here is fatal for the pass that raised it: the reconciler
records it on the Fleet's Ready condition and schedules the short requeue.
"""


class FleetError(Exception):
    """Base class for reconciliation failures."""

    reason = "ReconcileFailed"


class InvalidSpecError(FleetError):
    reason = "InvalidSpec"


class InvalidQuantityError(FleetError):
    """A resource quantity string could not be parsed."""

    reason = "InvalidQuantity"

    def __init__(self, value: str, field: str, owner: str):
        self.value = value
        self.field = field
        self.owner = owner
        super().__init__(f'{owner}: invalid quantity "{value}" for {field}')


class UnsupportedDatabaseError(FleetError):
    reason = "UnsupportedDatabase"


class OwnershipError(FleetError):
    """Owner wiring failed, or a live object belongs to someone else."""

    reason = "OwnershipConflict"


class ConvergenceError(FleetError):
    """The API server rejected a get/create/update/delete call."""

    reason = "ApiError"

    def __init__(self, action: str, kind: str, name: str, namespace: str, cause: Exception):
        self.action = action
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.status = getattr(cause, "status", None)
        detail = getattr(cause, "reason", None) or str(cause)
        super().__init__(f"failed to {action} {kind} {namespace}/{name}: {detail}")


class PassTimeoutError(FleetError):
    reason = "Timeout"


class StatusWriteError(FleetError):
    reason = "StatusWriteFailed"
