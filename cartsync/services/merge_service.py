# cartsync/services/merge_service.py
import threading

from cartsync.domain.schemas import GuestLine, MergeOutcome, MergeStatus
from cartsync.repos.guest_cart_repo import GuestCartRepo
from cartsync.services.cart_client import CartClient
from cartsync.services.cart_service import CartService
from cartsync.services.notification_service import NotificationService
from cartsync.services.session_service import SessionContext
from cartsync.utils.batch import BatchStatus, run_batch
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)


class MergeService:
    """
    Jednorazowe przeniesienie koszyka goscia do koszyka na serwerze po logowaniu.

    1. zalogowany + flaga sesji nieustawiona + koszyk goscia niepusty
    2. add_line dla kazdej linii rownolegle (serwer sam skleja duplikaty)
    3. wszystko ok -> czyscimy koszyk goscia, ustawiamy flage, reload
    4. cos padlo -> flaga zostaje pusta, w koszyku goscia zostaja linie ktore nie przeszly
    """

    def __init__(
        self,
        session: SessionContext,
        guest_repo: GuestCartRepo,
        cart_client: CartClient,
        cart_service: CartService,
        notifier: NotificationService,
        max_workers: int | None = None,
    ):
        self.session = session
        self.guest_repo = guest_repo
        self.cart_client = cart_client
        self.cart_service = cart_service
        self.notifier = notifier
        self.max_workers = max_workers
        self._in_progress = threading.Lock()

    def merge_if_needed(self) -> MergeOutcome:
        if not self.session.is_authenticated():
            return MergeOutcome(status=MergeStatus.SKIPPED, reason="not authenticated")

        if self.session.has_merged():
            return MergeOutcome(status=MergeStatus.SKIPPED, reason="already merged")

        #drugi trigger w trakcie trwajacego merge nic nie robi
        if not self._in_progress.acquire(blocking=False):
            logger.info("Guest cart merge already running, skipping duplicate trigger")
            return MergeOutcome(status=MergeStatus.SKIPPED, reason="merge in progress")

        try:
            #flaga mogla zostac ustawiona, zanim dostalismy lock
            if self.session.has_merged():
                return MergeOutcome(status=MergeStatus.SKIPPED, reason="already merged")
            return self._merge()
        finally:
            self._in_progress.release()

    def _merge(self) -> MergeOutcome:
        user_id = self.session.current_user_id()
        guest_lines = self.guest_repo.load()

        if not guest_lines:
            #nic do scalenia, nie sprawdzamy wiecej w tej sesji
            self.session.mark_merged()
            return MergeOutcome(status=MergeStatus.SKIPPED, reason="guest cart empty")

        logger.info(f"Merging {len(guest_lines)} guest cart lines into cart of user {user_id}")
        self.notifier.info("Merging your cart items...")

        def transplant(line: GuestLine):
            return self.cart_client.add_line(user_id, line.product_id, line.quantity, line.selected_size)

        batch = run_batch(transplant, guest_lines, key=lambda l: l.key, max_workers=self.max_workers)

        if batch.all_ok:
            self.guest_repo.clear()
            self.session.mark_merged()
            self.cart_service.load()
            self.notifier.success(f"{len(guest_lines)} item(s) added to your cart!")
            logger.info(f"Guest cart merged for user {user_id}")
            return MergeOutcome(status=MergeStatus.MERGED, merged=len(guest_lines))

        #linie ktore juz sa na serwerze wypadaja z koszyka goscia, zeby retry ich nie zdublowal
        merged_keys = {i.key for i in batch.succeeded}
        if merged_keys:
            remaining = [l for l in guest_lines if l.key not in merged_keys]
            self.guest_repo.save(remaining)
            self.cart_service.load()

        logger.warning(
            f"Guest cart merge for user {user_id}: {len(batch.succeeded)} ok, {len(batch.failed)} failed"
        )
        self.notifier.error("Some items failed to merge. Please check your cart.")

        status = MergeStatus.FAILED if batch.status == BatchStatus.ALL_FAILED else MergeStatus.PARTIAL
        return MergeOutcome(
            status=status,
            merged=len(batch.succeeded),
            failed=len(batch.failed),
            reason="; ".join(i.error or "unknown error" for i in batch.failed),
        )
