# cartsync/utils/batch.py
"""
Rownolegle wywolania dla sync koszyka i merge koszyka goscia.

Kazda pozycja leci w osobnym watku, wolajacy czeka na wszystkie i dostaje
jeden wynik na pozycje. Batch oceniany jest w calosci: ALL_OK, PARTIAL albo
ALL_FAILED.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, Hashable, Iterable, List, TypeVar

from cartsync.domain.schemas import ApiResult
from cartsync.utils.logging import get_logger
from cartsync.utils.settings import MAX_CONCURRENT_REQUESTS

logger = get_logger(__name__)

T = TypeVar("T")


class BatchStatus(str, Enum):
    ALL_OK = "ALL_OK"
    PARTIAL = "PARTIAL"
    ALL_FAILED = "ALL_FAILED"


@dataclass
class ItemResult(Generic[T]):
    key: Hashable
    item: T
    ok: bool
    result: ApiResult | None = None
    error: str | None = None


@dataclass
class BatchResult(Generic[T]):
    items: List[ItemResult[T]] = field(default_factory=list)

    @property
    def succeeded(self) -> List[ItemResult[T]]:
        return [i for i in self.items if i.ok]

    @property
    def failed(self) -> List[ItemResult[T]]:
        return [i for i in self.items if not i.ok]

    @property
    def status(self) -> BatchStatus:
        # pusty batch to sukces
        if not self.failed:
            return BatchStatus.ALL_OK
        if not self.succeeded:
            return BatchStatus.ALL_FAILED
        return BatchStatus.PARTIAL

    @property
    def all_ok(self) -> bool:
        return self.status == BatchStatus.ALL_OK


def _run_one(fn: Callable[[T], ApiResult], item: T, key: Hashable) -> ItemResult[T]:
    try:
        result = fn(item)
    except Exception as e:
        # wyjatek w watku to nieudana pozycja
        logger.error(f"Batch item {key} raised: {e}")
        return ItemResult(key=key, item=item, ok=False, error=str(e))

    if result.ok:
        return ItemResult(key=key, item=item, ok=True, result=result)
    return ItemResult(key=key, item=item, ok=False, result=result, error=result.message)


def run_batch(
    fn: Callable[[T], ApiResult],
    items: Iterable[T],
    key: Callable[[T], Hashable] = id,
    max_workers: int | None = None,
) -> BatchResult[T]:
    """
    Odpala ``fn`` dla kazdej pozycji rownolegle i czeka na wszystkie.

    Wyniki wracaja w kolejnosci wejscia, nie w kolejnosci zakonczenia.
    """
    items = list(items)
    if not items:
        return BatchResult()

    workers = max(1, min(max_workers or MAX_CONCURRENT_REQUESTS, len(items)))

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cartsync-batch") as pool:
        futures = [pool.submit(_run_one, fn, item, key(item)) for item in items]
        results = [f.result() for f in futures]

    batch: BatchResult[Any] = BatchResult(items=results)
    logger.info(
        f"Batch finished: {batch.status.value} "
        f"({len(batch.succeeded)} ok, {len(batch.failed)} failed)"
    )
    return batch
