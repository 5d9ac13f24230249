"""
Per-signature log context.

The signature currently being classified is kept in a ContextVar so that
every log line emitted while classifying it carries the signature,
including lines from concurrently running batches.
"""

import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Iterator, Optional

_current: ContextVar[Optional['ParseContext']] = ContextVar('current_parse', default=None)


@dataclass
class ParseContext:
    """Context of one classification."""
    signature: str
    started: float = field(default_factory=time.monotonic)
    stage: str = 'start'

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000


@contextmanager
def parse_context(signature: Optional[str]) -> Iterator[Optional[ParseContext]]:
    """Bind ``signature`` to the current context for the duration of the block."""
    if not signature:
        yield None
        return
    ctx = ParseContext(signature=signature)
    token = _current.set(ctx)
    try:
        yield ctx
    finally:
        _current.reset(token)


def get_current_context() -> Optional[ParseContext]:
    return _current.get()


def get_signature() -> Optional[str]:
    """Signature being classified, shortened for log lines."""
    ctx = _current.get()
    if ctx is None:
        return None
    return ctx.signature[:16]
