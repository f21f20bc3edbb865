from __future__ import annotations

import importlib
import logging
from typing import Iterable, List, Set

from sqlalchemy.orm import DeclarativeBase, configure_mappers

log = logging.getLogger("medstock.models")


class Base(DeclarativeBase):
    """Single ORM Base for the whole service."""

    pass


_INITIALIZED: bool = False

MODEL_MODULES = [
    "medstock.models.category",
    "medstock.models.medicine",
    "medstock.models.batch",
    "medstock.models.stock_transaction",
    "medstock.models.stock_event",
]


def init_models(
    *,
    extra_modules: Iterable[str] | None = None,
    exclude: Iterable[str] | None = None,
    force: bool = False,
) -> None:
    """
    Import every model module (so string relationship targets resolve and
    Base.metadata is complete), then configure mappers once.
    """
    global _INITIALIZED
    if _INITIALIZED and not force:
        log.debug("init_models() called again; already initialized, skipping.")
        return

    ex: Set[str] = set(exclude or [])
    loaded: List[str] = []

    for mod in [*MODEL_MODULES, *(extra_modules or [])]:
        if mod in ex or mod in loaded:
            continue
        importlib.import_module(mod)
        loaded.append(mod)

    configure_mappers()
    _INITIALIZED = True
    log.info("ORM models initialized & mappers configured (loaded %d modules)", len(loaded))
