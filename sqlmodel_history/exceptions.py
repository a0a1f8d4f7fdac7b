from sqlalchemy.exc import SQLAlchemyError


class HistoryException(Exception):
    """Base exception for all history tracking errors."""

    pass


class ConfigurationError(ValueError, HistoryException):
    """Exception raised when tracking options are invalid for a source model."""

    def __init__(self, *args, model_name: str | None = None):
        HistoryException.__init__(self, *args)
        self.model_name = model_name


class SchemaError(HistoryException):
    """Exception raised when a history schema cannot be derived or registered."""

    pass


class AssociationError(HistoryException):
    """Exception raised when the history -> source relationship cannot be declared."""

    pass


class HistoryWriteError(HistoryException):
    """Base exception for failures while writing a history record.

    The mutation that triggered the write is not undone by the writer; the
    caller of the mutation decides whether to roll back.
    """

    def __init__(self, message: str, source_id=None):
        super().__init__(message)
        self.source_id = source_id


class ActorResolutionError(HistoryWriteError):
    """Exception raised when the actor resolver fails, rejects or times out."""

    pass


class PersistenceError(HistoryWriteError):
    """Exception raised when the history row insert fails."""

    def __init__(self, message: str, source_id=None, original_error: SQLAlchemyError | None = None):
        """Initialize the exception.

        Args:
            message: A descriptive error message
            source_id: Identity of the source record being tracked
            original_error: The original SQLAlchemy error that was raised
        """
        super().__init__(message, source_id=source_id)
        self.original_error = original_error


class ReentrantMutationError(HistoryWriteError):
    """Exception raised when a record is mutated again while its history write is in flight."""

    pass


class NotFoundError(HistoryException):
    """Exception raised when a source record or revision does not exist."""

    pass


class HistoryDBConfigurationError(HistoryException):
    """Exception raised when a database configuration is invalid or missing required variables."""

    pass


class HistoryDBConnectionError(HistoryException):
    """Exception raised when a connection to the database fails."""

    pass
