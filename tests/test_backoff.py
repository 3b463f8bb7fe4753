import pytest

from ezjobs.v1.infra.jobs.backoff import (
    WEBHOOK_RETRY_LADDER_S,
    ExponentialBackoff,
    FixedBackoff,
    FixedLadderBackoff,
    backoff_from_config,
    exponential_ms,
)


def test_exponential_doubles_per_attempt():
    backoff = exponential_ms(1000)

    assert [backoff.delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]


def test_ladder_follows_webhook_schedule_and_caps():
    backoff = FixedLadderBackoff()

    assert [backoff.delay(n) for n in range(7)] == [60, 300, 900, 3600, 21600, 21600, 21600]
    assert backoff.delay(-3) == 60


def test_ladder_must_not_be_empty():
    with pytest.raises(ValueError, match="must not be empty"):
        FixedLadderBackoff(ladder_s=())


def test_fixed_ignores_attempts():
    assert FixedBackoff(2.5).delay(1) == FixedBackoff(2.5).delay(9) == 2.5


def test_configs_rebuild_the_same_policy():
    for policy in (exponential_ms(60000), FixedBackoff(3), FixedLadderBackoff()):
        assert backoff_from_config(policy.to_config(), default=FixedBackoff(0)) == policy


def test_missing_config_falls_back_to_default():
    default = ExponentialBackoff(base_s=5)
    assert backoff_from_config(None, default) is default


def test_unknown_config_type_is_rejected():
    with pytest.raises(ValueError, match="Unknown backoff type"):
        backoff_from_config({"type": "fibonacci"}, FixedBackoff(0))


def test_webhook_ladder_constant():
    assert WEBHOOK_RETRY_LADDER_S == (60, 300, 900, 3600, 21600)
