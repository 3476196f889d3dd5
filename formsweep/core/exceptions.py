class FormCleanupError(Exception):
    """Base exception for cleanup job errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error

class ConfigurationError(FormCleanupError):
    """Raised when configuration is invalid or missing. Fatal before any deletion."""
    pass

class SelectionError(FormCleanupError):
    """Raised when expired tokens cannot be listed. Fatal to the run."""
    pass

class ClassificationError(FormCleanupError):
    """Raised when liveness cannot be determined for one candidate. The candidate is deferred."""
    def __init__(self, message: str, token: str = None, original_error: Exception = None):
        super().__init__(message, original_error)
        self.token = token

class CascadeError(FormCleanupError):
    """Raised when the delete transaction for one candidate fails. Nothing is committed."""
    def __init__(self, message: str, token: str = None, original_error: Exception = None):
        super().__init__(message, original_error)
        self.token = token

class JobStatusError(FormCleanupError):
    """Raised when the run status cannot be written back to the scheduler."""
    pass
