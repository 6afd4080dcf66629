class RepositoryError(Exception):
    """Base exception for all repository errors."""
    pass


class ConstraintViolationError(RepositoryError):
    """Raised when a write breaks a unique or foreign key constraint enforced by the database."""
    pass


class DuplicateEntityError(ConstraintViolationError):
    """Raised when an attempt is made to create an entity that violates a unique constraint."""
    pass


class NotFoundError(RepositoryError):
    """Raised when an operation targets an entity that does not exist."""
    pass


class InvalidInputError(RepositoryError, ValueError):
    """Raised when an observation is malformed or arrives out of order."""
    pass


class DatabaseConnectionError(RepositoryError):
    """Raised when the repository cannot connect to the database."""
    pass
