"""Tests for usage counters and configuration."""
from lexledger.config import LexLedgerConfig
from lexledger.store.substrate import DurableStore
from lexledger.usage import UsageCounters


class TestUsageCounters:
    """Daily counters with thresholds."""

    def test_track_and_get(self, substrate, clock):
        usage = UsageCounters(substrate, clock)
        usage.track("backend_requests")
        usage.track("backend_requests", 2)

        assert usage.get("backend_requests") == 3

    def test_reset_on_new_day(self, substrate, clock, fake_time):
        usage = UsageCounters(substrate, clock)
        usage.track("backend_requests", 10)

        fake_time.advance(days=1)
        assert usage.get("backend_requests") == 0

    def test_persisted(self, tmp_path, clock):
        UsageCounters(DurableStore(tmp_path), clock).track("timestamp_requests")
        assert UsageCounters(DurableStore(tmp_path), clock).get("timestamp_requests") == 1

    def test_check_limits_thresholds(self, substrate, clock):
        usage = UsageCounters(substrate, clock, limits={"backend_requests": 10})
        usage.track("backend_requests", 7)

        report = usage.check_limits()["backend_requests"]
        assert report["ratio"] == 0.7
        assert report["warning"] is True
        assert report["critical"] is False

        usage.track("backend_requests", 2)
        assert usage.check_limits()["backend_requests"]["critical"] is True

    def test_storage_quota_reported(self, tmp_path, clock):
        usage = UsageCounters(DurableStore(tmp_path, max_bytes=100_000), clock)
        usage.track("backend_requests")

        storage = usage.check_limits()["storage_bytes"]
        assert storage["limit"] == 100_000
        assert storage["used"] > 0


class TestConfig:
    """Environment loading and validation."""

    def test_defaults_valid(self):
        assert LexLedgerConfig().validate() == []

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("LEXLEDGER_DATA_DIR", "/tmp/ll")
        monkeypatch.setenv("LEXLEDGER_MERKLE_BATCH_SIZE", "50")
        monkeypatch.setenv("LEXLEDGER_SYNC_ON_WRITE", "false")
        monkeypatch.setenv("LEXLEDGER_SENSITIVE_FIELDS", "cpf, senha")

        config = LexLedgerConfig.from_env()

        assert config.data_dir == "/tmp/ll"
        assert config.merkle_batch_size == 50
        assert config.sync_on_write is False
        assert config.sensitive_fields == ["cpf", "senha"]

    def test_validate_reports_errors(self):
        config = LexLedgerConfig(sync_max_attempts=0, merkle_batch_size=0, probe_port=70000)
        errors = config.validate()

        assert len(errors) == 3
        assert any("sync_max_attempts" in e for e in errors)
