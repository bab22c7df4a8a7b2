import pytest

from services.discount_service.app.leases import LeaseStore


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class _FakeRedis:
    """Just enough of redis.asyncio.Redis for lease handling."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.expiries: dict[str, int] = {}

    async def set(self, key: str, value: str, *, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self.values:
            return None
        self.values[key] = value
        if ex is not None:
            self.expiries[key] = ex
        return True

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def eval(self, script: str, numkeys: int, key: str, owner: str) -> int:
        assert numkeys == 1
        if self.values.get(key) == owner:
            del self.values[key]
            return 1
        return 0


@pytest.mark.asyncio
async def test_in_memory_lease_is_exclusive_until_released() -> None:
    leases = LeaseStore()

    assert await leases.acquire("reconcile", "a", 60)
    assert not await leases.acquire("reconcile", "b", 60)
    assert not await leases.release("reconcile", "b")
    assert await leases.holder("reconcile") == "a"

    assert await leases.release("reconcile", "a")
    assert await leases.acquire("reconcile", "b", 60)


@pytest.mark.asyncio
async def test_in_memory_lease_expires_after_ttl() -> None:
    clock = _FakeClock()
    leases = LeaseStore(clock=clock)
    assert await leases.acquire("reconcile", "a", 30)

    clock.now += 29
    assert not await leases.acquire("reconcile", "b", 30)

    clock.now += 1
    assert await leases.holder("reconcile") is None
    assert await leases.acquire("reconcile", "b", 30)
    assert not await leases.release("reconcile", "a")


@pytest.mark.asyncio
async def test_leases_with_different_names_are_independent() -> None:
    leases = LeaseStore()

    assert await leases.acquire("reconcile", "a", 60)
    assert await leases.acquire("import", "a", 60)


@pytest.mark.asyncio
async def test_redis_lease_uses_prefixed_key_with_expiry() -> None:
    redis = _FakeRedis()
    leases = LeaseStore(redis, key_prefix="discount_lease")

    assert await leases.acquire("discount:reconciliation", "a", 120)
    assert not await leases.acquire("discount:reconciliation", "b", 120)

    assert redis.values == {"discount_lease:discount:reconciliation": "a"}
    assert redis.expiries["discount_lease:discount:reconciliation"] == 120
    assert await leases.holder("discount:reconciliation") == "a"


@pytest.mark.asyncio
async def test_redis_release_only_drops_own_lease() -> None:
    redis = _FakeRedis()
    leases = LeaseStore(redis)
    await leases.acquire("reconcile", "a", 60)

    assert not await leases.release("reconcile", "b")
    assert await leases.holder("reconcile") == "a"
    assert await leases.release("reconcile", "a")
    assert await leases.holder("reconcile") is None
