# cartsync/services/session_service.py
from cartsync.data.kv_store import KeyValueStore, MemoryKeyValueStore
from cartsync.domain.errors import NotAuthenticatedError
from cartsync.repos.guest_cart_repo import STORE_ERRORS
from cartsync.utils.settings import MERGE_FLAG_KEY
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)


class SessionContext:
    """
    Stan sesji przegladarki przekazywany jawnie do serwisow:
    -kto jest zalogowany (start po udanym logowaniu, end przy wylogowaniu)
    -flaga "koszyk goscia juz scalony" zyjaca tyle co sesja (przezywa wylogowanie)
    """

    def __init__(self, session_store: KeyValueStore | None = None, merge_flag_key: str = MERGE_FLAG_KEY):
        self.session_store = session_store or MemoryKeyValueStore()
        self.merge_flag_key = merge_flag_key
        self._user_id: int | None = None
        self._token: str | None = None

    # =====================================================
    # AUTH STATE
    # =====================================================
    def start(self, user_id: int, token: str | None = None) -> None:
        logger.info(f"Session started for user {user_id}")
        self._user_id = user_id
        self._token = token

    def end(self) -> None:
        logger.info(f"Session ended for user {self._user_id}")
        self._user_id = None
        self._token = None
        #flaga merge zostaje, kasuje ja dopiero nowa sesja

    def is_authenticated(self) -> bool:
        return self._user_id is not None

    def current_user_id(self) -> int | None:
        return self._user_id

    def require_user_id(self) -> int:
        if self._user_id is None:
            raise NotAuthenticatedError("User is not logged in")
        return self._user_id

    def token(self) -> str | None:
        return self._token

    # =====================================================
    # MERGE FLAG
    # =====================================================
    def has_merged(self) -> bool:
        try:
            return self.session_store.get(self.merge_flag_key) == "true"
        except STORE_ERRORS as e:
            logger.error(f"Error reading merge flag: {e}")
            return False

    def mark_merged(self) -> None:
        try:
            self.session_store.set(self.merge_flag_key, "true")
        except STORE_ERRORS as e:
            logger.error(f"Error saving merge flag: {e}")

    def clear_merged(self) -> None:
        try:
            self.session_store.remove(self.merge_flag_key)
        except STORE_ERRORS as e:
            logger.error(f"Error clearing merge flag: {e}")
