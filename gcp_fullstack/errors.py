"""Exceptions raised while building a fullstack deployment."""


class FullStackError(Exception):
    """Base exception for fullstack build errors."""

    pass


class ConfigurationError(FullStackError):
    """Raised when stack configuration is missing or invalid.

    Attributes:
        message: Human-readable error description
        field: Dotted path of the configuration field that caused the error
    """

    def __init__(self, message: str, field: str | None = None):
        self.message = message
        self.field = field
        super().__init__(f"{field}: {message}" if field else message)


class LoadError(FullStackError):
    """Raised when the stack configuration cannot be loaded from the environment.

    Attributes:
        message: Human-readable error description
        variables: Environment variables that were missing or malformed
    """

    def __init__(self, message: str, variables: list[str] | None = None):
        self.message = message
        self.variables = variables or []
        super().__init__(self.message)
