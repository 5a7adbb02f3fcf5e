import logging

from ads_config import settings as s


def test_defaults_match_graph_api_limits():
    cfg = s.GatewaySettings()

    assert cfg.protocol_version == "2024-11-05"
    assert cfg.api_version == "v19.0"
    assert cfg.hourly_quota == 200
    assert cfg.window_seconds == 3600.0
    assert cfg.min_request_interval == 0.005
    assert cfg.max_retries == 3
    assert cfg.request_timeout == 30.0
    assert cfg.max_pages == 1000
    assert cfg.keep_alive_interval == 30.0
    assert cfg.call_deadline is None


def test_from_env_reads_overrides(monkeypatch):
    monkeypatch.setenv("META_ACCESS_TOKEN", "  tok  ")
    monkeypatch.setenv("META_API_VERSION", "v21.0")
    monkeypatch.setenv("ADS_GRAPH_BASE_URL", "http://localhost:9999/")
    monkeypatch.setenv("ADS_HOURLY_QUOTA", "50")
    monkeypatch.setenv("ADS_MAX_RETRIES", "1")
    monkeypatch.setenv("ADS_CALL_DEADLINE", "2.5")
    monkeypatch.setenv("ADS_PORT", "9000")

    cfg = s.GatewaySettings.from_env()

    assert cfg.access_token == "tok"
    assert cfg.api_version == "v21.0"
    assert cfg.graph_base_url == "http://localhost:9999"
    assert cfg.hourly_quota == 50
    assert cfg.max_retries == 1
    assert cfg.call_deadline == 2.5
    assert cfg.port == 9000


def test_from_env_tolerates_garbage(monkeypatch):
    monkeypatch.delenv("META_ACCESS_TOKEN", raising=False)
    monkeypatch.setenv("ADS_HOURLY_QUOTA", "lots")
    monkeypatch.setenv("ADS_REQUEST_TIMEOUT", "soon")
    monkeypatch.setenv("ADS_CALL_DEADLINE", "-1")

    cfg = s.GatewaySettings.from_env()

    assert cfg.access_token is None
    assert cfg.hourly_quota == 200
    assert cfg.request_timeout == 30.0
    assert cfg.call_deadline is None


def test_load_env_once_reads_explicit_file_without_overriding(tmp_path, monkeypatch):
    env = tmp_path / "gateway.env"
    env.write_text("META_ACCESS_TOKEN=from-file\nADS_PORT=1234\n", encoding="utf-8")
    monkeypatch.setenv("ADS_ENV_FILE", str(env))
    monkeypatch.setenv("ADS_PORT", "4321")
    monkeypatch.delenv("META_ACCESS_TOKEN", raising=False)
    s.load_env_once.cache_clear()

    try:
        assert s.load_env_once() == env.resolve()
        cfg = s.GatewaySettings.from_env()
    finally:
        s.load_env_once.cache_clear()
        monkeypatch.delenv("META_ACCESS_TOKEN", raising=False)

    assert cfg.access_token == "from-file"
    assert cfg.port == 4321


def test_telemetry_dir_override(tmp_path, monkeypatch):
    monkeypatch.setenv("ADS_TELEMETRY_DIR", str(tmp_path / "t"))
    assert s.telemetry_dir() == (tmp_path / "t").resolve()


def test_configure_logging_is_idempotent(monkeypatch):
    root = logging.getLogger()
    handler = logging.NullHandler()
    monkeypatch.setattr(root, "handlers", [handler])

    s.configure_logging()

    assert root.handlers == [handler]
