import threading

from cartsync.domain.schemas import ApiResult
from cartsync.utils.batch import BatchStatus, run_batch


def test_all_ok_keeps_input_order():
    batch = run_batch(lambda n: ApiResult.success(n * 10), [3, 1, 2], key=lambda n: n)

    assert batch.status == BatchStatus.ALL_OK
    assert batch.all_ok
    assert [i.key for i in batch.items] == [3, 1, 2]
    assert [i.result.data for i in batch.items] == [30, 10, 20]


def test_partial_failure():
    def fn(n):
        if n % 2:
            return ApiResult.failure("odd", status_code=500)
        return ApiResult.success(n)

    batch = run_batch(fn, [1, 2, 3, 4], key=lambda n: n)

    assert batch.status == BatchStatus.PARTIAL
    assert [i.key for i in batch.succeeded] == [2, 4]
    assert [i.key for i in batch.failed] == [1, 3]
    assert batch.failed[0].error == "odd"


def test_all_failed():
    batch = run_batch(lambda n: ApiResult.failure("down"), [1, 2], key=lambda n: n)

    assert batch.status == BatchStatus.ALL_FAILED
    assert not batch.all_ok


def test_exceptions_become_failed_items():
    def fn(n):
        if n == 2:
            raise RuntimeError("boom")
        return ApiResult.success(n)

    batch = run_batch(fn, [1, 2], key=lambda n: n)

    assert batch.status == BatchStatus.PARTIAL
    [failed] = batch.failed
    assert failed.key == 2
    assert failed.result is None
    assert failed.error == "boom"


def test_empty_batch_is_ok():
    batch = run_batch(lambda n: ApiResult.success(n), [])

    assert batch.status == BatchStatus.ALL_OK
    assert batch.items == []


def test_items_run_concurrently():
    barrier = threading.Barrier(3, timeout=5)

    def fn(n):
        barrier.wait()
        return ApiResult.success(n)

    batch = run_batch(fn, [1, 2, 3], key=lambda n: n, max_workers=3)

    assert batch.all_ok
