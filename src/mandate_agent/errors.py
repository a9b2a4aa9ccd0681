"""
Mandate agent error types.

Specific exceptions for different failure modes, enabling callers
to handle each case appropriately (retry, fall back, suppress, abort).
"""


class AgentError(Exception):
    """Base error for all mandate agent operations."""
    pass


class ConfigError(AgentError):
    """Missing or malformed configuration. Raised once, before the loop starts."""
    pass


# Network errors
class NetworkError(AgentError):
    """Network-level failures (DNS, connection refused, timeouts, etc.)."""
    pass


class RpcError(NetworkError):
    """JSON-RPC endpoint returned an error object or an unusable reply."""
    def __init__(self, method: str, message: str, code: int | None = None):
        self.method = method
        self.code = code
        super().__init__(f"RPC {method} failed: {message}")


# Gated-data payment errors
class PaymentError(AgentError):
    """Base error for gated-data payment failures."""
    pass


class ProtocolError(PaymentError):
    """Challenge or proof could not be parsed."""
    pass


class InsufficientBalanceError(PaymentError):
    """Configured balance does not cover the challenge amount."""
    def __init__(self, amount: int, balance: int):
        self.amount = amount
        self.balance = balance
        super().__init__(f"Insufficient mock balance: {balance} < {amount}")


class PaymentMethodNotImplementedError(PaymentError, NotImplementedError):
    """Payment method exists but is deliberately unavailable."""
    pass


class PaymentRejectedError(PaymentError):
    """Server rejected the payment proof."""
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Payment rejected ({status_code}): {message}")


class PaymentTimeoutError(PaymentError):
    """Gated-data request timed out."""
    pass


class ChallengeError(PaymentError):
    """Proof references an unknown, expired, consumed or mismatched challenge."""
    pass


# Execution errors
class ExecutionError(AgentError):
    """Trade submission failed or reverted."""
    pass
