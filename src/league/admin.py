"""
Self-service promotion of a signed-in user to league administrator.

    Idle -> CheckingLimit -> CheckingCode -> Writing -> Done
                  |               |             |
                  +---------------+-------------+--> Failed(reason)

The limit check and the role write run under a lock so two promotions on the
same host cannot both pass the check before either writes. Promotions coming
from different hosts sharing one MongoDB are not serialized.
"""
import logging
import os
import tempfile

from filelock import FileLock, Timeout

from league import services
from league.errors import StoreError, Unavailable, ValidationError
from league.store import USERS

logger = logging.getLogger(__name__)

IDLE = 'idle'
CHECKING_LIMIT = 'checking_limit'
CHECKING_CODE = 'checking_code'
WRITING = 'writing'
DONE = 'done'
FAILED = 'failed'

LIMIT_REACHED = 'limit_reached'
INVALID_CODE = 'invalid_code'
WRITE_ERROR = 'write_error'
STORE_ERROR = 'store_error'

MESSAGES = {
    LIMIT_REACHED: 'Maximum number of administrators has been reached. '
                   'Contact an existing administrator for access.',
    INVALID_CODE: 'Invalid administrator secret code. '
                  'Please try again or contact an existing administrator.',
    WRITE_ERROR: 'Failed to make you an admin. Please try again.',
    STORE_ERROR: 'Could not verify administrator access right now. Please try again.',
}
SUCCESS_MESSAGE = 'You are now an admin! Please log out and log back in to see the admin dashboard.'


def _default_lock_path() -> str:
    return os.path.join(tempfile.gettempdir(), 'league-admin-promotion.lock')


def promotion_lock(store, lock_path: str = None, lock_timeout: float = 10) -> FileLock:
    """Lock shared by every write that can raise the administrator count."""
    if lock_path is None:
        data_dir = getattr(store, 'data_dir', None)
        lock_path = os.path.join(data_dir, '.admin.lock') if data_dir else _default_lock_path()
    return FileLock(lock_path, timeout=lock_timeout)


def set_user_role(store, user_id: str, role: str, lock_timeout: float = 10):
    """Change a user's role from the admin pages, honouring the administrator limit."""
    if role not in ('admin', 'user'):
        raise ValidationError(f'Unknown role {role!r}')
    if role == 'user':
        services.update_user_role(store, user_id, role)
        return
    try:
        with promotion_lock(store, lock_timeout=lock_timeout):
            if services.get_user(store, user_id).is_admin:
                return
            if services.is_admin_limit_reached(store):
                raise ValidationError(MESSAGES[LIMIT_REACHED])
            services.update_user_role(store, user_id, role)
    except Timeout as e:
        raise Unavailable('Timed out waiting for the promotion lock') from e


class AdminPromotion:
    def __init__(self, store, user_id: str, lock_path: str = None, lock_timeout: float = 10):
        self.store = store
        self.user_id = user_id
        self.state = IDLE
        self.reason = None
        self.error = None
        self.history = [IDLE]
        self._lock = promotion_lock(store, lock_path, lock_timeout)

    def _enter(self, state: str):
        self.state = state
        self.history.append(state)

    def _fail(self, reason: str, error: Exception = None):
        self.reason = reason
        self.error = error
        self._enter(FAILED)
        logger.info(f'Admin promotion for {self.user_id} failed: {reason}')

    @property
    def done(self) -> bool:
        return self.state == DONE

    @property
    def failed(self) -> bool:
        return self.state == FAILED

    @property
    def message(self) -> str:
        if self.done:
            return SUCCESS_MESSAGE
        return MESSAGES.get(self.reason, '')

    def run(self, code: str) -> str:
        """Drive the promotion to Done or Failed and return the final state."""
        if self.state != IDLE:
            raise RuntimeError('An admin promotion can only run once')
        try:
            with self._lock:
                if self._check_limit() and self._check_code(code):
                    self._write()
        except Timeout as e:
            self._fail(STORE_ERROR, Unavailable('Timed out waiting for the promotion lock'))
            logger.warning(f'Admin promotion lock timeout: {e}')
        return self.state

    def _check_limit(self) -> bool:
        self._enter(CHECKING_LIMIT)
        try:
            limit = services.get_settings(self.store).max_admin_users
            count = services.count_admin_users(self.store)
        except StoreError as e:
            self._fail(STORE_ERROR, e)
            return False
        if count >= limit:
            self._fail(LIMIT_REACHED)
            return False
        return True

    def _check_code(self, code: str) -> bool:
        self._enter(CHECKING_CODE)
        try:
            valid = services.verify_admin_secret_code(self.store, code or '')
        except StoreError as e:
            self._fail(STORE_ERROR, e)
            return False
        if not valid:
            self._fail(INVALID_CODE)
            return False
        return True

    def _write(self) -> bool:
        self._enter(WRITING)
        try:
            self.store.update(USERS, self.user_id, {'role': 'admin', 'active': True})
        except StoreError as e:
            self._fail(WRITE_ERROR, e)
            return False
        self._enter(DONE)
        logger.info(f'User {self.user_id} promoted to admin')
        return True

    def raise_for_failure(self):
        """Raise the failure as a store error, for callers that want exceptions."""
        if not self.failed:
            return
        if self.error is not None:
            raise self.error
        raise ValidationError(self.message)
