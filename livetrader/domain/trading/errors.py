"""
Domain-specific errors for the trading bounded context.

All errors raised from the domain layer must be defined here.
These are mapped to HTTP responses at the interface layer.
No framework imports allowed.
"""


class TradingDomainError(Exception):
    """Base error for all trading domain errors."""

    code = "TRADING_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)


class InvalidConfigError(TradingDomainError):
    """Raised when risk limits passed to the control loop are invalid."""

    code = "INVALID_CONFIG"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid live trading configuration: {reason}")
        self.reason = reason


class InvariantViolationError(TradingDomainError):
    """Raised when a portfolio or trade invariant would be broken.

    Indicates a bug, not a business condition. Processing for the
    affected account must halt.
    """

    code = "INVARIANT_VIOLATION"

    def __init__(self, detail: str) -> None:
        super().__init__(f"Invariant violation: {detail}")
        self.detail = detail


class CallTimeoutError(TradingDomainError):
    """Raised when a collaborator call does not complete in time."""

    code = "TIMEOUT"

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(f"{operation} timed out after {timeout:g}s")
        self.operation = operation
        self.timeout = timeout


class SignalNotFoundError(TradingDomainError):
    """Raised when a signal cannot be found."""

    code = "SIGNAL_NOT_FOUND"

    def __init__(self, signal_id: str) -> None:
        super().__init__(f"Signal not found: {signal_id}")
        self.signal_id = signal_id


class TradeNotFoundError(TradingDomainError):
    """Raised when a trade cannot be found."""

    code = "TRADE_NOT_FOUND"

    def __init__(self, trade_id: str) -> None:
        super().__init__(f"Trade not found: {trade_id}")
        self.trade_id = trade_id


class PortfolioNotFoundError(TradingDomainError):
    """Raised when a portfolio cannot be found."""

    code = "PORTFOLIO_NOT_FOUND"

    def __init__(self, account_id: str) -> None:
        super().__init__(f"Portfolio not found: {account_id}")
        self.account_id = account_id


class InvalidStatusTransitionError(TradingDomainError):
    """Raised when a terminal signal or trade is asked to change status."""

    code = "INVALID_TRANSITION"

    def __init__(self, entity_id: str, current: str, target: str) -> None:
        super().__init__(f"Cannot move {entity_id} from {current} to {target}")
        self.entity_id = entity_id
        self.current = current
        self.target = target


class DuplicateTradeError(TradingDomainError):
    """Raised when a trade with the same idempotency key already exists."""

    code = "DUPLICATE_REQUEST"

    def __init__(self, key: str) -> None:
        super().__init__(f"Trade already exists for idempotency key {key}")
        self.key = key
