"""Errors raised by the progression domain."""
import uuid


class ProgressionError(Exception):
    """Base exception for progression errors."""

    pass


class AssignmentNotFound(ProgressionError):
    """No assignment exists for the given client, id or share token."""

    pass


class StaleVersion(ProgressionError):
    """A commit was based on a version that is no longer current.

    The caller must reload the assignment and either drop its edit or
    reapply it against the newer base.
    """

    def __init__(
        self,
        assignment_id: uuid.UUID,
        expected_version: int,
        current_version: int | None = None,
    ):
        self.assignment_id = assignment_id
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"Assignment {assignment_id} moved past version {expected_version}"
            + (f" (now {current_version})" if current_version is not None else "")
        )


class TransportUnavailable(ProgressionError):
    """The sync backend (key-value store or change feed) could not be reached."""

    pass


class CatalogLookupError(ProgressionError):
    """The exercise catalog could not classify an exercise."""

    pass


class CommandNotAllowed(ProgressionError):
    """The command is not available to the writer that sent it."""

    def __init__(self, command_type: str, role: str):
        self.command_type = command_type
        self.role = role
        super().__init__(f"Command '{command_type}' is not allowed for {role}")
