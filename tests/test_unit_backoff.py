from heartbeat_importer.utils.backoff import compute_backoff_seconds
from heartbeat_importer.config import QueueConfig


def test_backoff_growth_and_cap():
    first = compute_backoff_seconds(1, base=1, factor=2, max_seconds=10, jitter_pct=0.0)
    second = compute_backoff_seconds(2, base=1, factor=2, max_seconds=10, jitter_pct=0.0)
    third = compute_backoff_seconds(3, base=1, factor=2, max_seconds=10, jitter_pct=0.0)
    assert first == 1
    assert second == 2
    assert third == 4
    capped = compute_backoff_seconds(10, base=1, factor=2, max_seconds=5, jitter_pct=0.0)
    assert capped <= 5


def test_backoff_jitter_stays_in_band():
    for _ in range(50):
        delay = compute_backoff_seconds(2, base=10, factor=2, max_seconds=300, jitter_pct=0.1)
        assert 18 <= delay <= 22


def test_backoff_attempt_below_one_treated_as_first():
    assert compute_backoff_seconds(0, base=3, factor=2, max_seconds=10, jitter_pct=0.0) == 3


def test_queue_config_retry_delay_uses_its_policy():
    config = QueueConfig(backoff_base_seconds=2, backoff_factor=3, backoff_max_seconds=100, backoff_jitter_pct=0.0)
    assert config.retry_delay(1) == 2
    assert config.retry_delay(3) == 18
    assert config.retry_delay(10) == 100


def test_queue_config_reads_backoff_policy():
    config = QueueConfig.from_settings({}, {"base_seconds": 1, "factor": 4, "max_seconds": 60, "jitter_pct": 0})
    assert (config.backoff_base_seconds, config.backoff_factor, config.backoff_max_seconds) == (1.0, 4.0, 60.0)
    assert config.retry_delay(2) == 4
