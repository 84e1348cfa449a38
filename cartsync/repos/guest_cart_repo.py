# cartsync/repos/guest_cart_repo.py
import json
from decimal import Decimal
from typing import Any, Dict, List

from pydantic import ValidationError
from redis.exceptions import RedisError

from cartsync.data.kv_store import KeyValueStore
from cartsync.domain.schemas import DEFAULT_SIZE, GuestLine, LineKey, now_ms
from cartsync.utils.settings import GUEST_CART_KEY
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)

# bledy odczytu/zapisu store'a nie wychodza poza repo
STORE_ERRORS = (OSError, ValueError, RedisError)


def json_number(value: Any):
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def _needs_migration(record: Dict[str, Any]) -> bool:
    if "id" in record or "image" in record:
        return True
    if not record.get("selectedSize"):
        return True
    images = record.get("images", [])
    if not isinstance(images, list) or any(not isinstance(i, str) for i in images):
        return True
    added_at = record.get("addedAt")
    return not isinstance(added_at, int) or isinstance(added_at, bool)


def _canonical(record: Dict[str, Any]) -> Dict[str, Any]:
    data = {k: v for k, v in record.items() if k not in ("id", "image")}
    if not data.get("images") and record.get("image"):
        data["images"] = [record["image"]]
    return data


def _key(product_id: int, size: str | None) -> LineKey:
    return (product_id, size or DEFAULT_SIZE)


class GuestCartRepo:
    """
    Koszyk goscia w lokalnym key-value store.
    Bez sieci i bez walidacji cen/stanow, tym zajmuje sie serwer przy checkout.
    """

    def __init__(self, store: KeyValueStore, key: str = GUEST_CART_KEY):
        self.store = store
        self.key = key

    # =====================================================
    # READ
    # =====================================================
    def _read_raw(self) -> List[Any]:
        try:
            raw = self.store.get(self.key)
            if not raw:
                return []
            parsed = json.loads(raw)
        except STORE_ERRORS as e:
            logger.error(f"Error loading guest cart: {e}")
            return []

        if not isinstance(parsed, list):
            logger.warning(f"Guest cart under {self.key} is not a list, ignoring it")
            return []
        return parsed

    def load(self) -> List[GuestLine]:
        records = self._read_raw()
        migrated = False
        lines: Dict[LineKey, GuestLine] = {}

        for record in records:
            if not isinstance(record, dict):
                migrated = True
                continue

            if _needs_migration(record):
                migrated = True
                record = _canonical(record)

            try:
                line = GuestLine.model_validate(record)
            except ValidationError as e:
                logger.warning(f"Dropping unreadable guest cart record {record!r}: {e}")
                migrated = True
                continue

            #(productId, size) musi byc unikalne, duplikaty sklejamy
            existing = lines.get(line.key)
            if existing:
                migrated = True
                existing.quantity += line.quantity
                existing.added_at = max(existing.added_at, line.added_at)
            else:
                lines[line.key] = line

        result = list(lines.values())
        if migrated:
            logger.info(f"Guest cart migrated to current format ({len(result)} lines)")
            self.save(result)
        return result

    def is_empty(self) -> bool:
        return not self.load()

    # =====================================================
    # WRITE
    # =====================================================
    def save(self, lines: List[GuestLine]) -> bool:
        payload = [l.model_dump(by_alias=True, exclude_none=True) for l in lines]
        try:
            self.store.set(self.key, json.dumps(payload, default=json_number))
            return True
        except STORE_ERRORS as e:
            logger.error(f"Error saving guest cart: {e}")
            return False

    def add_or_increment(self, line: GuestLine) -> List[GuestLine]:
        lines = self.load()

        for existing in lines:
            if existing.key == line.key:
                existing.quantity += line.quantity
                existing.added_at = now_ms()
                logger.info(
                    f"Guest cart: product {line.product_id} ({line.selected_size}) "
                    f"quantity -> {existing.quantity}"
                )
                break
        else:
            lines.append(line.model_copy(update={"added_at": now_ms()}))
            logger.info(f"Guest cart: added product {line.product_id} ({line.selected_size})")

        self.save(lines)
        return lines

    def remove(self, product_id: int, size: str | None) -> List[GuestLine]:
        key = _key(product_id, size)
        lines = [l for l in self.load() if l.key != key]
        self.save(lines)
        return lines

    def update_quantity(self, product_id: int, size: str | None, quantity: int) -> List[GuestLine]:
        key = _key(product_id, size)
        lines = self.load()

        for line in lines:
            if line.key == key:
                line.quantity = max(1, quantity)
                line.added_at = now_ms()
                self.save(lines)
                break
        else:
            logger.warning(f"Guest cart has no line {key}, quantity not updated")

        return lines

    def clear(self) -> None:
        try:
            self.store.remove(self.key)
        except STORE_ERRORS as e:
            logger.error(f"Error clearing guest cart: {e}")
