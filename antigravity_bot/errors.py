class TradingError(Exception):
    """Base class for recoverable paper-trading failures."""


class InsufficientBalanceError(TradingError):
    def __init__(self, balance: float, required: float):
        super().__init__(f"balance {balance:.2f} below minimum margin {required:.2f}")
        self.balance = balance
        self.required = required


class PositionExistsError(TradingError):
    def __init__(self, symbol: str):
        super().__init__(f"a position is already open for {symbol}")
        self.symbol = symbol


class PositionNotFoundError(TradingError):
    def __init__(self, symbol: str):
        super().__init__(f"no open position for {symbol}")
        self.symbol = symbol


class PriceUnavailableError(TradingError):
    def __init__(self, symbol: str):
        super().__init__(f"no live price known for {symbol}")
        self.symbol = symbol


class SignalGenerationError(TradingError):
    """The signal generator failed or returned an unusable payload."""


class RateLimitError(SignalGenerationError):
    """The signal generator rejected the request with a quota/rate limit."""
