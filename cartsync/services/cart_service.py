# cartsync/services/cart_service.py
import threading
from decimal import Decimal
from typing import Dict, List

from cartsync.domain.errors import CartError
from cartsync.domain.schemas import (
    ApiResult,
    AuthLine,
    CartLine,
    CartView,
    CartViewLine,
    DEFAULT_SIZE,
    GuestLine,
    LineKey,
    Outcome,
    SyncOutcome,
)
from cartsync.repos.guest_cart_repo import GuestCartRepo
from cartsync.repos.pending_edit_repo import PendingEditRepo, edit_for
from cartsync.services.api_client import error_from_result
from cartsync.services.cart_client import CartClient
from cartsync.services.notification_service import NotificationService
from cartsync.services.session_service import SessionContext
from cartsync.utils.batch import BatchStatus, run_batch
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)

# oznaczenie etapu, na ktorym padla wymiana linii w sync
STAGE_REMOVE = "remove"
STAGE_ADD = "add"


def view_line(
    line: CartLine,
    *,
    original_quantity: int,
    line_total: Decimal,
    quantity: int | None = None,
    cart_item_id: int | None = None,
) -> CartViewLine:
    return CartViewLine(
        product_id=line.product_id,
        product_name=line.product_name,
        unit_price=line.unit_price,
        discounted_unit_price=line.discounted_unit_price,
        quantity=line.quantity if quantity is None else quantity,
        selected_size=line.selected_size,
        images=list(line.images),
        cart_item_id=cart_item_id,
        original_quantity=original_quantity,
        line_total=line_total,
    )


class CartService:
    """
    Reconciler koszyka: jeden widok niezaleznie od tego czy user jest zalogowany.
    query (load, view) tylko odczyt
    commands (add, quantity, remove, clear, sync) modyfikuja stan

    Gosc: wszystko idzie prosto do GuestCartRepo.
    Zalogowany: serwer jest zrodlem prawdy, zmiany ilosci leza w PendingEditRepo
    do momentu sync (przed checkoutem albo na zadanie).
    """

    def __init__(
        self,
        session: SessionContext,
        guest_repo: GuestCartRepo,
        pending_repo: PendingEditRepo,
        cart_client: CartClient,
        notifier: NotificationService,
        max_workers: int | None = None,
    ):
        self.session = session
        self.guest_repo = guest_repo
        self.pending_repo = pending_repo
        self.cart_client = cart_client
        self.notifier = notifier
        self.max_workers = max_workers
        self._view = CartView()
        self._lock = threading.RLock()

    @property
    def view(self) -> CartView:
        with self._lock:
            return self._view.model_copy(deep=True)

    @property
    def has_unsynced_changes(self) -> bool:
        return self._view.has_unsynced_changes

    @property
    def subtotal(self) -> Decimal:
        return self._view.subtotal

    #query - odczyt
    def load(self) -> CartView:
        with self._lock:
            if not self.session.is_authenticated():
                self._view = self._guest_view()
                return self.view

            user_id = self.session.current_user_id()
            result = self.cart_client.fetch(user_id)

            if not result.ok:
                #zostawiamy poprzedni widok, nie zerujemy koszyka przez chwilowy brak sieci
                logger.error(f"Fetch cart failed for user {user_id}: {result.message}")
                self.notifier.error("Failed to load cart", result.message)
                return self.view

            self._view = self._overlay(result.data)
            logger.info(
                f"Cart loaded for user {user_id}: {len(self._view.lines)} lines, "
                f"unsynced={self._view.has_unsynced_changes}"
            )
            return self.view

    def _guest_view(self) -> CartView:
        lines = [
            view_line(l, original_quantity=l.quantity, line_total=l.total_for())
            for l in self.guest_repo.load()
        ]
        return CartView(authenticated=False, lines=lines)

    def _overlay(self, auth_lines: List[AuthLine]) -> CartView:
        edits = self.pending_repo.load()
        keep: Dict[LineKey, int] = {}
        lines: List[CartViewLine] = []

        for line in auth_lines:
            target = edit_for(edits, line.key)

            if target is None or target == line.quantity:
                #bez zmian, linia dokladnie taka jak z serwera
                server_total = line.total_price if line.total_price is not None else line.total_for()
                lines.append(
                    view_line(
                        line,
                        original_quantity=line.quantity,
                        line_total=server_total,
                        cart_item_id=line.cart_item_id,
                    )
                )
                continue

            #stary rekord bez rozmiaru rozbijamy na osobne edycje per rozmiar
            keep[line.key] = target
            lines.append(
                view_line(
                    line,
                    quantity=target,
                    original_quantity=line.quantity,
                    line_total=line.total_for(target),
                    cart_item_id=line.cart_item_id,
                )
            )

        #edycje dla linii ktorych juz nie ma (albo rownych serwerowi) sa do wyrzucenia
        if keep != edits:
            logger.info(f"Pruning {len(edits) - len(keep)} stale cached updates")
            self.pending_repo.save(keep)

        return CartView(
            authenticated=True,
            lines=lines,
            has_unsynced_changes=any(l.has_pending_change for l in lines),
        )

    #commands
    def add_item(self, line: GuestLine) -> Outcome:
        with self._lock:
            if not self.session.is_authenticated():
                self.guest_repo.add_or_increment(line)
                self._view = self._guest_view()
                self.notifier.success(f"{line.product_name or 'Item'} added to cart")
                return Outcome.success()

            user_id = self.session.current_user_id()
            result = self.cart_client.add_line(user_id, line.product_id, line.quantity, line.selected_size)
            if not result.ok:
                self.notifier.error("Failed to add item to cart", result.message)
                return Outcome.fail(error_from_result(result, "Failed to add item to cart"))

            self.notifier.success(f"{line.product_name or 'Item'} added to cart")
            self.load()
            return Outcome.success()

    def change_quantity(self, product_id: int, size: str | None, delta: int) -> CartView:
        with self._lock:
            if self.session.is_authenticated():
                line = self._find(product_id, size)
            else:
                #gosc: aktualna ilosc ze store, widok moze byc jeszcze niezaladowany
                key = (product_id, size or DEFAULT_SIZE)
                line = next((l for l in self.guest_repo.load() if l.key == key), None)
            if line is None:
                logger.warning(f"No cart line ({product_id}, {size}) to change")
                return self.view
            return self.set_quantity(product_id, size, line.quantity + delta)

    def set_quantity(self, product_id: int, size: str | None, quantity: int) -> CartView:
        quantity = max(1, quantity)

        with self._lock:
            if not self.session.is_authenticated():
                self.guest_repo.update_quantity(product_id, size, quantity)
                self._view = self._guest_view()
                return self.view

            line = self._find(product_id, size)
            if line is None:
                logger.warning(f"No cart line ({product_id}, {size}) to change")
                return self.view

            #bez zapytania do serwera, tylko widok + cache
            if quantity == line.original_quantity:
                self.pending_repo.discard(line.key)
            else:
                self.pending_repo.set(line.key, quantity)

            lines = [
                l.model_copy(update={"quantity": quantity, "line_total": l.total_for(quantity)})
                if l.key == line.key
                else l
                for l in self._view.lines
            ]
            self._view = CartView(
                authenticated=True,
                lines=lines,
                has_unsynced_changes=any(l.has_pending_change for l in lines),
            )
            return self.view

    def remove_line(self, product_id: int, size: str | None) -> Outcome:
        with self._lock:
            if not self.session.is_authenticated():
                self.guest_repo.remove(product_id, size)
                self._view = self._guest_view()
                self.notifier.success("Item removed from cart")
                return Outcome.success()

            line = self._find(product_id, size)
            if line is None or line.cart_item_id is None:
                return Outcome.fail(CartError.validation("Item is not in the cart"))

            result = self.cart_client.remove_line(line.cart_item_id)
            if not result.ok:
                self.notifier.error("Failed to remove item", result.message)
                self.load()
                return Outcome.fail(error_from_result(result, "Failed to remove item"))

            self.pending_repo.discard(line.key)
            self.notifier.success("Item removed from cart")
            self.load()
            return Outcome.success()

    def clear(self) -> Outcome:
        with self._lock:
            if not self.session.is_authenticated():
                self.guest_repo.clear()
                self._view = CartView(authenticated=False)
                self.notifier.success("Cart cleared")
                return Outcome.success()

            user_id = self.session.current_user_id()
            result = self.cart_client.clear_all(user_id)
            if not result.ok:
                self.notifier.error("Failed to clear cart", result.message)
                self.load()
                return Outcome.fail(error_from_result(result, "Failed to clear cart"))

            self.pending_repo.clear()
            self._view = CartView(authenticated=True)
            self.notifier.success("Cart cleared")
            return Outcome.success()

    def sync(self) -> SyncOutcome:
        """
        Wypycha lokalne zmiany ilosci na serwer.

        Serwer nie ma operacji "ustaw ilosc", wiec kazda zmieniona linia to
        remove + add z nowa iloscia. Linie ida rownolegle, sukces tylko gdy
        wszystkie przejda. Przy bledzie przeladowujemy stan z serwera i
        zwracamy liste linii ktore sie nie udaly, bez ponawiania.
        """
        with self._lock:
            if not self.session.is_authenticated():
                return SyncOutcome(ok=True)

            if not self._view.authenticated:
                self.load()

            changed = [l for l in self._view.lines if l.has_pending_change]
            if not changed:
                return SyncOutcome(ok=True)

            user_id = self.session.current_user_id()
            logger.info(f"Syncing {len(changed)} changed lines for user {user_id}")

            def replace(line: CartViewLine) -> ApiResult:
                removed = self.cart_client.remove_line(line.cart_item_id)
                if not removed.ok:
                    return removed.model_copy(update={"data": {"stage": STAGE_REMOVE}})
                added = self.cart_client.add_line(user_id, line.product_id, line.quantity, line.selected_size)
                if not added.ok:
                    return added.model_copy(update={"data": {"stage": STAGE_ADD}})
                return added

            batch = run_batch(replace, changed, key=lambda l: l.key, max_workers=self.max_workers)

            synced = [i.key for i in batch.succeeded]
            lost = [
                i.key for i in batch.failed
                if i.result is not None and i.result.data == {"stage": STAGE_ADD}
            ]
            failed = [i.key for i in batch.failed if i.key not in lost]

            if batch.all_ok:
                self.pending_repo.clear()
                self.load()
                self.notifier.success("Cart updated successfully")
                return SyncOutcome(ok=True, synced=synced)

            #zsynchronizowane i utracone edycje wypadaja, te ktorych remove nie przeszedl zostaja na retry
            for key in synced + lost:
                self.pending_repo.discard(key)
            self.load()

            message = "Some items failed to update"
            if lost:
                message += f"; {len(lost)} item(s) were removed and could not be re-added"
            self.notifier.error(message, "Please check your cart and try again")

            if batch.status == BatchStatus.ALL_FAILED:
                error = CartError.network(message, failed=failed, lost=lost)
            else:
                error = CartError.partial(message, synced=synced, failed=failed, lost=lost)
            return SyncOutcome(ok=False, error=error, synced=synced, failed=failed, lost=lost)

    def discard_pending_edits(self) -> None:
        with self._lock:
            self.pending_repo.clear()
            lines = [
                l.model_copy(update={"quantity": l.original_quantity, "line_total": l.total_for(l.original_quantity)})
                if l.has_pending_change
                else l
                for l in self._view.lines
            ]
            self._view = CartView(authenticated=self._view.authenticated, lines=lines)

    def _find(self, product_id: int, size: str | None) -> CartViewLine | None:
        return self._view.find((product_id, size or DEFAULT_SIZE))
