class DomainError(Exception):
    """Base class for domain-specific errors."""

    pass


class UpgradeRequiredError(DomainError):
    """Exception raised when a request needs a higher membership grade."""

    pass
