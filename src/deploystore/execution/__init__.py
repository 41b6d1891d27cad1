"""Execution policies shared by every platform call.

    rate_limit.py   RateLimitWindow (fixed window, header-driven)
    retry.py        ExponentialBackoff, RetryContext
"""

from deploystore.execution.rate_limit import RateLimitWindow
from deploystore.execution.retry import ExponentialBackoff, RequestAttempt, RetryContext

__all__ = ["RateLimitWindow", "ExponentialBackoff", "RequestAttempt", "RetryContext"]
