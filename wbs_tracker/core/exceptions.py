"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent error codes and HTTP status everywhere. Raw SQLAlchemy
exceptions never reach a caller: the store's transaction wrapper converts
them to StoreError.

Usage:
    from wbs_tracker.core.exceptions import NotFoundError, InvalidOperationError

    raise NotFoundError(resource="WbsItem", resource_id=item_id)
    raise InvalidOperationError("cannot promote root", reason="promote_root")
"""


class NotFoundError(Exception):
    """Raised when a referenced resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "WbsItem", "Project").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when request input is malformed (missing field, wrong type, out of range).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidOperationError(Exception):
    """Raised when a tree mutation violates a structural precondition.

    Examples: promoting a LEVEL1 item, demoting a LEVEL4 item, demoting
    without a previous sibling, reparenting an item under itself.
    Detected before any write, so the tree is unchanged.

    Args:
        message: Human-readable explanation.
        reason: Stable machine-readable key (e.g. "promote_root").
        item_id: The item the operation targeted.
    """

    def __init__(self, message: str, reason: str | None = None, item_id: str | None = None) -> None:
        self.reason = reason
        self.item_id = item_id
        super().__init__(message)


class StructuralIntegrityError(Exception):
    """Raised when the persisted tree is internally inconsistent.

    A dangling parent reference or a parent chain that loops back on itself.
    Fatal for the current mutation: it aborts and rolls back rather than
    attempting a repair.
    """

    def __init__(self, message: str, item_id: str | None = None) -> None:
        self.item_id = item_id
        super().__init__(message)


class StoreError(Exception):
    """Raised when the underlying persistence layer fails.

    Wraps the original SQLAlchemy exception as ``__cause__``. The engine does
    not retry; callers decide.
    """
