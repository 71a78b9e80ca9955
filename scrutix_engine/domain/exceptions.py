"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ConfigurationError(DomainException):
    """Caller-supplied input makes the analysis impossible to start"""

    pass


class EmptyTransactionSetError(ConfigurationError):
    """No transactions left to analyze after filtering"""

    pass


class MissingConditionsError(ConfigurationError):
    """No bank conditions resolvable, fallbacks included"""

    pass


class OverlappingGridError(ConfigurationError):
    """A non-draft condition grid overlaps another one of the same bank"""

    def __init__(self, bank_code: str, grid_id: str, existing_id: str):
        super().__init__(
            f"Grid {grid_id} overlaps grid {existing_id} for bank {bank_code}"
        )
        self.bank_code = bank_code
        self.grid_id = grid_id
        self.existing_id = existing_id

