from crm_mirror.services.locks import acquire_sweep_lock, get_sweep_lock_owner, release_sweep_lock, sweep_lock_key


async def test_lock_is_exclusive_until_released(fake_redis):
    assert await acquire_sweep_lock(fake_redis, 1, "first")
    assert not await acquire_sweep_lock(fake_redis, 1, "second")
    assert await get_sweep_lock_owner(fake_redis, 1) == "first"

    assert await release_sweep_lock(fake_redis, 1, "first")
    assert await acquire_sweep_lock(fake_redis, 1, "second")


async def test_release_with_foreign_token_keeps_lock(fake_redis):
    await acquire_sweep_lock(fake_redis, 1, "holder")

    assert not await release_sweep_lock(fake_redis, 1, "expired-holder")
    assert fake_redis.data[sweep_lock_key(1)] == "holder"
    assert await release_sweep_lock(fake_redis, 1, "holder")
    assert sweep_lock_key(1) not in fake_redis.data


async def test_releasing_a_missing_lock_is_a_no_op(fake_redis):
    assert not await release_sweep_lock(fake_redis, 1, "anyone")
