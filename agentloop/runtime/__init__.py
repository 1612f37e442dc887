"""
Runtime module - building blocks of the run controller.

This module contains:
- canonicalize: History canonicalization
- UsageLimiter: Usage accounting and ceilings
- RetryPolicy: Retry decisions for model requests
- CancellationToken: Cooperative cancellation
- PartsAccumulator: Stream chunk accumulation
- History processors and output handling
"""

from .accumulator import PartsAccumulator
from .canonical import canonicalize, canonicalize_args, repair_json
from .control import CancellationToken
from .history import HistoryProcessor, TruncateByTokens, TruncateHistory, apply_processors
from .output import OutputSchema, OutputValidator, extract_json_from_text
from .retry import ErrorKind, RetryDecision, RetryPolicy, classify_error
from .usage import UsageLimiter

__all__ = [
    "PartsAccumulator",
    "canonicalize",
    "canonicalize_args",
    "repair_json",
    "CancellationToken",
    "HistoryProcessor",
    "TruncateByTokens",
    "TruncateHistory",
    "apply_processors",
    "OutputSchema",
    "OutputValidator",
    "extract_json_from_text",
    "ErrorKind",
    "RetryDecision",
    "RetryPolicy",
    "classify_error",
    "UsageLimiter",
]
