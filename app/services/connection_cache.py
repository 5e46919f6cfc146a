"""In-process cache of product database clients keyed by product ID."""

import threading
from typing import Any, Dict, List, Optional


class ConnectionCache:
    """
    Map from product ID to a live client.

    There is no TTL and no staleness check: whoever changes or deletes a
    product's database config must call invalidate() for that product.

    The lock only guards the map itself. Two concurrent misses for the same
    product may both build a client; the last set() wins.
    """

    def __init__(self):
        self._clients: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, product_id: str) -> Optional[Any]:
        with self._lock:
            return self._clients.get(product_id)

    def set(self, product_id: str, client: Any) -> None:
        with self._lock:
            self._clients[product_id] = client

    def invalidate(self, product_id: str) -> Optional[Any]:
        """Drop the cached client for a product and return it, or None if none was cached."""
        with self._lock:
            return self._clients.pop(product_id, None)

    def clear(self) -> List[Any]:
        """Drop every cached client and return them."""
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        return clients

    def __contains__(self, product_id: object) -> bool:
        with self._lock:
            return product_id in self._clients

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)
