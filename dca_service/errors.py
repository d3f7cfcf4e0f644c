"""Exception hierarchy.

Tick-fatal: ConfigurationError. Item-scoped (turned into ERROR report entries
by the batch evaluator): MarketDataUnavailable, ExchangeRejected,
InsufficientBalance, StaleRecord, PendingOrderUnresolved. Validation errors
raised straight to the caller: InsufficientData, PositionClosed, NotFound,
InvalidTrailingStop, CampaignExists.
"""


class DcaServiceError(Exception):
    """Base class for all service errors."""


class ConfigurationError(DcaServiceError):
    """Missing credentials or an unavailable collaborator; aborts the tick."""


class ItemError(DcaServiceError):
    """Failure scoped to a single campaign or position."""


class MarketDataUnavailable(ItemError):
    pass


class ExchangeRejected(ItemError):
    def __init__(self, code: str | int | None, message: str):
        self.code = code
        self.message = message
        super().__init__(f"Exchange rejected order ({code}): {message}" if code is not None else message)


class InsufficientBalance(ItemError):
    def __init__(self, asset: str, required, available):
        self.asset = asset
        self.required = required
        self.available = available
        super().__init__(f"Insufficient {asset} balance: need {required}, available {available}")


class StaleRecord(ItemError):
    """The stored record changed since it was loaded (version mismatch)."""


class PendingOrderUnresolved(ItemError):
    """A previously submitted order could not be matched against the exchange."""


class InsufficientData(DcaServiceError):
    def __init__(self, needed: int, got: int):
        self.needed = needed
        self.got = got
        super().__init__(f"Insufficient data: need {needed} prices, got {got}")


class PositionClosed(DcaServiceError):
    pass


class NotFound(DcaServiceError):
    pass


class InvalidTrailingStop(DcaServiceError):
    pass


class CampaignExists(DcaServiceError):
    pass
