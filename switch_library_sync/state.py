"""Shared, lock-guarded holder for the loaded catalog and local inventory."""

import threading

from .catalog import Catalog
from .exceptions import StateNotLoadedError
from .inventory import Inventory


class LibraryState:
    """
    Holds the most recent catalog and inventory behind one lock.

    Builders run outside the lock and only swap their finished result in,
    so readers always see complete datasets.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._catalog: Catalog | None = None
        self._inventory: Inventory | None = None

    def locked(self) -> threading.Lock:
        """The lock itself, for steps that must not overlap a swap."""
        return self._lock

    def snapshot(self) -> tuple[Catalog | None, Inventory | None]:
        with self._lock:
            return self._catalog, self._inventory

    def require(self, catalog: bool = True, inventory: bool = True) -> tuple[Catalog, Inventory]:
        """
        Snapshot both datasets, failing fast when a required one is missing.

        Raises StateNotLoadedError, which callers report differently from an
        empty result.
        """
        with self._lock:
            missing = []
            if inventory and self._inventory is None:
                missing.append("Local library")
            if catalog and self._catalog is None:
                missing.append("Title database")
            if missing:
                raise StateNotLoadedError(missing)
            return self._catalog, self._inventory

    def set_catalog(self, catalog: Catalog) -> None:
        with self._lock:
            self._catalog = catalog

    def set_inventory(self, inventory: Inventory) -> None:
        with self._lock:
            self._inventory = inventory

    @property
    def catalog_loaded(self) -> bool:
        with self._lock:
            return self._catalog is not None

    @property
    def inventory_loaded(self) -> bool:
        with self._lock:
            return self._inventory is not None
