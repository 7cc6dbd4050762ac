"""Builds one counter session: storage, stores, live views and services."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .core.paths import layout_for
from .core.bus import EventBus
from .core.config_store import get_config_int, load_config
from .core.db import Database
from .core.order_codes import OrderCodeGenerator
from .services.cart import CartStore
from .services.catalog import ProductCatalog
from .services.inventory import RequirementsView
from .services.order_cache import RealtimeOrderCache
from .services.orders import OrderEditor, OrderSubmissionService
from .services.store import SqliteOrderStore, SqliteProductStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CounterSession:
    db: Database
    bus: EventBus
    orders_store: SqliteOrderStore
    products_store: SqliteProductStore
    catalog: ProductCatalog
    cache: RealtimeOrderCache
    cart: CartStore
    submission: OrderSubmissionService
    editor: OrderEditor
    requirements: RequirementsView
    currency_symbol: str = "$"

    async def start(self) -> bool:
        """Load and subscribe the live views. Returns ``False`` if any load failed."""
        self.catalog.subscribe()
        self.cache.subscribe()
        catalog_ok = await self.catalog.load()
        orders_ok = await self.cache.load()
        self.cart.restore()
        logger.info("session started: %d product(s), %d order(s)", len(self.catalog), len(self.cache))
        return catalog_ok and orders_ok

    def close(self) -> None:
        self.requirements.close()
        self.cache.close()
        self.catalog.close()
        self.db.close()


def create_session(
    identity: Any,
    *,
    data_root: Optional[Path] = None,
    bus: Optional[EventBus] = None,
) -> CounterSession:
    """Wire a session from the settings file under *data_root* (or the default root)."""
    layout = layout_for(data_root).ensure()
    db_path, settings_path, cart_path = layout.db_path, layout.settings_file, layout.cart_file

    config = load_config(settings_path)
    bus = bus or EventBus()

    db = Database(db_path, synchronous=str(config.get("sqlite_synchronous", "FULL")))
    db.init_schema()
    orders_store = SqliteOrderStore(db)
    products_store = SqliteProductStore(db)

    catalog = ProductCatalog(products_store, bus=bus)
    cache = RealtimeOrderCache(orders_store, bus=bus)
    cart = CartStore(bus=bus, autosave_path=cart_path if config.get("cart_autosave", True) else None)
    attempts = max(1, get_config_int("order_code_attempts", 5, settings_path))
    submission = OrderSubmissionService(
        orders_store,
        catalog,
        identity,
        code_generator=OrderCodeGenerator(str(config.get("order_code_prefix") or "ORD")),
        max_attempts=attempts,
        cache=cache,
        bus=bus,
    )
    editor = OrderEditor(orders_store, catalog, cache=cache)
    requirements = RequirementsView(cache, catalog, bus=bus)
    return CounterSession(
        db=db,
        bus=bus,
        orders_store=orders_store,
        products_store=products_store,
        catalog=catalog,
        cache=cache,
        cart=cart,
        submission=submission,
        editor=editor,
        requirements=requirements,
        currency_symbol=str(config.get("currency_symbol") or "$"),
    )
