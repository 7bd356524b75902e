"""Custom exception hierarchy for the expense data-access layer.

Storage failures have no class here: errors raised by SQLAlchemy or the
database driver reach the caller unchanged.
"""


class ExpenseError(Exception):
    """Base exception for all MyExpenses errors."""


# --- Configuration ---
class ConfigError(ExpenseError):
    """Invalid or missing configuration."""


# --- Repository / unit of work ---
class RepositoryError(ExpenseError):
    """Data-access contract violation."""


class InvalidArgumentError(RepositoryError, ValueError):
    """A required argument to a repository operation was missing or invalid."""


class AmbiguousMatchError(RepositoryError):
    """A single-entity query matched more than one row."""

    def __init__(self, entity_name: str, criteria: str):
        self.entity_name = entity_name
        self.criteria = criteria
        super().__init__(
            f"Expected at most one {entity_name} matching [{criteria}], found several"
        )


class PrincipalUnresolvedError(RepositoryError):
    """No acting principal could be resolved for audit stamping."""


class UnitOfWorkClosedError(RepositoryError):
    """The unit of work was used after its persistence context was released."""
