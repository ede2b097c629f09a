class ConfigurationError(ValueError):
    """Raised when a server configuration is missing fields or holds invalid values."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field
