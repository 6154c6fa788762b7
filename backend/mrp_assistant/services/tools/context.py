"""
Execution context handed to tool handlers.

ToolEnvironment is long-lived (one per process or per test); ToolContext is
built for a single tool call so that its NameResolver cache and bound logger
never leak into other calls.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from mrp_assistant.core.logging import get_logger
from mrp_assistant.services.query.translator import QueryTranslator
from mrp_assistant.services.results.names import NameDirectory, NameResolver, StoreNameDirectory
from mrp_assistant.services.store.base import DocumentStore

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ToolContext:
    store: DocumentStore
    translator: QueryTranslator
    names: NameResolver
    log: Any
    now: Callable[[], datetime] = utc_now


@dataclass
class ToolEnvironment:
    store: DocumentStore
    translator: QueryTranslator = field(default_factory=QueryTranslator)
    directory: Optional[NameDirectory] = None
    clock: Callable[[], datetime] = utc_now

    def __post_init__(self):
        if self.directory is None:
            self.directory = StoreNameDirectory(self.store)

    def for_call(self, log: Optional[Any] = None) -> ToolContext:
        log = log or logger
        return ToolContext(
            store=self.store,
            translator=self.translator,
            names=NameResolver(self.directory, log=log),
            log=log,
            now=self.clock,
        )
