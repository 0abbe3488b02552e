import time
import uuid
from contextlib import contextmanager

import redis
from app.domain.errors import ConcurrencyConflict
from app.utils.retry import redis_retry
from app.utils.settings import REDIS_URL, CART_LOCK_TTL_SECONDS
from app.utils.logging import get_logger

logger = get_logger(__name__)

#LUA porownaj i usun, atomicity
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

#redis wykonuje atomowo przez lua, skrypt dziala jako jedna nieprzerywalna operacja
#nie mozna wcisnac sie miedzy GET a DEL, wiec tu jest get + porownanie + del wszystko naraz


class LockService:
    """
    -blokada koszyka per tozsamosc (user albo sesja)
    -zwalnianie locka tylko przez wlasciciela tokenu
    -atomowosc przy pomocy lua
    """

    def __init__(self, url: str | None = None, client=None):
        self.redis = client or redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @redis_retry()
    def acquire(self, key: str, token: str, ttl: int) -> bool:
        logger.debug(f"Acquire lock {key}")
        #SET cart:user:1:lock "<token>" NX EX 10
        return bool(self.redis.set(name=key, value=token, nx=True, ex=ttl))

    @redis_retry()
    def release(self, key: str, token: str) -> bool:
        logger.debug(f"Release lock {key}")
        res = self.redis.eval(_RELEASE_LUA, 1, key, token)
        return bool(res)

    @contextmanager
    def cart_lock(self, identity_key: str, ttl: int = CART_LOCK_TTL_SECONDS, wait_seconds: float = 3.0):
        """
        Serializes cart mutations of one identity. Waits briefly for a concurrent
        request to finish, then gives up with ConcurrencyConflict.
        """
        key = f"cart:{identity_key}:lock"
        token = uuid.uuid4().hex
        deadline = time.monotonic() + wait_seconds

        while not self.acquire(key, token, ttl):
            if time.monotonic() >= deadline:
                logger.warning(f"Cart lock {key} still held after {wait_seconds}s")
                raise ConcurrencyConflict("Your cart is being updated by another request. Please retry.")
            time.sleep(0.05)

        try:
            yield
        finally:
            self.release(key, token)
