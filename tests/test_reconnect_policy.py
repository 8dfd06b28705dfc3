from afkbot.utils.resilience import DisconnectReason, ReconnectPolicy


def test_linear_backoff_is_capped():
    policy = ReconnectPolicy()

    delays = [policy.next_delay() for _ in range(9)]

    assert delays == [15, 30, 45, 60, 75, 90, 105, 120, 120]
    assert policy.attempts == 9
    assert policy.continuous_failures == 9


def test_kick_waits_at_least_kick_delay_and_never_shrinks():
    policy = ReconnectPolicy()

    first = policy.next_delay(DisconnectReason.KICKED)
    following = [policy.next_delay(DisconnectReason.END) for _ in range(4)]

    assert first == 60
    assert following == [60, 60, 60, 75]


def test_delays_non_decreasing_within_streak():
    policy = ReconnectPolicy()
    reasons = [DisconnectReason.END, DisconnectReason.KICKED, DisconnectReason.ERROR, DisconnectReason.END,
               DisconnectReason.KICKED, DisconnectReason.END, DisconnectReason.ERROR]

    delays = [policy.next_delay(reason) for reason in reasons]

    assert delays == sorted(delays)
    assert all(delay <= policy.max_delay for delay in delays)


def test_extended_cooldown_after_too_many_failures():
    policy = ReconnectPolicy(max_continuous=3, extended_cooldown=1800)

    for _ in range(3):
        assert policy.next_delay() < 1800
    assert not policy.in_cooldown

    assert policy.next_delay() == 1800
    assert policy.in_cooldown
    assert policy.cooldowns == 1
    assert policy.continuous_failures == 0

    # cooldown starts a fresh streak
    assert policy.next_delay() == 15
    assert not policy.in_cooldown


def test_reset_restarts_backoff_but_keeps_attempt_total():
    policy = ReconnectPolicy()
    for _ in range(5):
        policy.next_delay()

    policy.reset()

    assert policy.continuous_failures == 0
    assert policy.attempts == 5
    assert policy.next_delay() == policy.min_delay == 15
