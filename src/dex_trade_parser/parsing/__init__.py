"""Balance extraction, DEX identification and trade classification."""

from .balance_changes import extract_native_deltas, extract_token_deltas
from .dex_identifier import identify_dex
from .classifier import ClassifyOptions, TradeClassifier
from .pipeline import BatchParseResult, BatchParsingPipeline
from .diagnostics import build_diagnostics

__all__ = [
    "extract_token_deltas",
    "extract_native_deltas",
    "identify_dex",
    "ClassifyOptions",
    "TradeClassifier",
    "BatchParseResult",
    "BatchParsingPipeline",
    "build_diagnostics",
]
