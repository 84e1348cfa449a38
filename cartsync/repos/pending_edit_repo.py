# cartsync/repos/pending_edit_repo.py
import json
from typing import Dict

from cartsync.data.kv_store import KeyValueStore
from cartsync.domain.schemas import LineKey
from cartsync.repos.guest_cart_repo import STORE_ERRORS
from cartsync.utils.settings import PENDING_EDITS_KEY
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)

# rekord bez selectedSize dotyczy produktu w kazdym rozmiarze
ANY_SIZE = None


class PendingEditRepo:
    """
    Niezsynchronizowane zmiany ilosci dla koszyka zalogowanego uzytkownika.
    Tylko docelowa ilosc, bez cen i danych produktu.
    Format: [{productId, selectedSize, quantity}, ...]
    """

    def __init__(self, store: KeyValueStore, key: str = PENDING_EDITS_KEY):
        self.store = store
        self.key = key

    def load(self) -> Dict[LineKey, int]:
        try:
            raw = self.store.get(self.key)
            if not raw:
                return {}
            records = json.loads(raw)
        except STORE_ERRORS as e:
            logger.error(f"Error loading cached updates: {e}")
            return {}

        if not isinstance(records, list):
            logger.warning(f"Cached updates under {self.key} are not a list, ignoring them")
            return {}

        edits: Dict[LineKey, int] = {}
        for r in records:
            try:
                key = (int(r["productId"]), r.get("selectedSize") or ANY_SIZE)
                quantity = int(r["quantity"])
            except (KeyError, TypeError, ValueError, AttributeError):
                logger.warning(f"Skipping malformed cached update {r!r}")
                continue
            if quantity >= 1:
                edits[key] = quantity
        return edits

    def save(self, edits: Dict[LineKey, int]) -> None:
        if not edits:
            self.clear()
            return

        records = []
        for (product_id, size), quantity in edits.items():
            record = {"productId": product_id, "quantity": quantity}
            if size is not ANY_SIZE:
                record["selectedSize"] = size
            records.append(record)

        try:
            self.store.set(self.key, json.dumps(records))
        except STORE_ERRORS as e:
            logger.error(f"Error saving cached updates: {e}")

    def set(self, key: LineKey, quantity: int) -> None:
        edits = self.load()
        edits[key] = quantity
        self.save(edits)

    def discard(self, key: LineKey) -> None:
        edits = self.load()
        # rekord bez rozmiaru zostaje, dotyczy tez pozostalych rozmiarow
        if edits.pop(key, None) is not None:
            self.save(edits)

    def clear(self) -> None:
        try:
            self.store.remove(self.key)
        except STORE_ERRORS as e:
            logger.error(f"Error clearing cached updates: {e}")


def edit_for(edits: Dict[LineKey, int], key: LineKey) -> int | None:
    """Edycja dla konkretnej linii, z fallbackiem na rekord bez rozmiaru."""
    if key in edits:
        return edits[key]
    return edits.get((key[0], ANY_SIZE))
