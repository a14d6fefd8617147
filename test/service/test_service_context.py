import logging

import pytest
import yaml
from pydantic import BaseModel

from dmr.exception import ConfigMalformedError
from dmr.service_context import (
    KUBE_BROKER_HOST,
    NATIVE_BROKER_HOST,
    ServiceContext,
    broker_host,
    host_path_lib,
    run,
    run_mode,
)
from dmr.util.logger_config import ServiceIdentityFilter


@pytest.fixture
def service_file(tmp_path):
    def _write(content) -> str:
        path = tmp_path / "service.yml"
        text = content if isinstance(content, str) else yaml.safe_dump(content)
        path.write_text(text, encoding="utf-8")
        return str(path)

    return _write


class TestEnvironment:
    def test_defaults(self, monkeypatch):
        for name in ("BAETYL_HOST_PATH_LIB", "BAETYL_RUN_MODE"):
            monkeypatch.delenv(name, raising=False)
        assert host_path_lib() == "/var/lib/baetyl"
        assert run_mode() == "kube"
        assert broker_host() == KUBE_BROKER_HOST

    def test_native_mode(self, monkeypatch):
        monkeypatch.setenv("BAETYL_RUN_MODE", " Native ")
        assert run_mode() == "native"
        assert broker_host() == NATIVE_BROKER_HOST

    def test_unknown_mode_is_kube(self, monkeypatch):
        monkeypatch.setenv("BAETYL_RUN_MODE", "docker")
        assert run_mode() == "kube"

    def test_identity(self, monkeypatch, tmp_path):
        monkeypatch.setenv("BAETYL_NODE_NAME", "node-a")
        monkeypatch.setenv("BAETYL_APP_NAME", "app-a")
        monkeypatch.setenv("BAETYL_SERVICE_NAME", "svc-a")
        ctx = ServiceContext(tmp_path / "missing.yml")
        assert (ctx.node_name(), ctx.app_name(), ctx.service_name()) == ("node-a", "app-a", "svc-a")
        assert ctx.log().name == "svc-a"
        assert any(isinstance(f, ServiceIdentityFilter) for f in ctx.log().filters)


class TestServiceConfig:
    def test_missing_file_uses_defaults(self, tmp_path, caplog):
        caplog.set_level(logging.INFO)
        ctx = ServiceContext(tmp_path / "missing.yml")
        assert ctx.config.mqtt.port == 1883
        assert ctx.config.logger.level == "INFO"
        assert ctx.config.mailbox.queue_maxsize == 1024
        assert "using defaults" in caplog.text

    def test_values_and_env_placeholders(self, service_file, monkeypatch):
        monkeypatch.setenv("DMR_TEST_BROKER", "10.1.1.1")
        path = service_file(
            {
                "mqtt": {"address": "${DMR_TEST_BROKER}", "port": 1884, "clientid": "drv"},
                "logger": {"level": "debug"},
                "driver": {"name": "modbus-driver", "strict_access_config": True},
                "mailbox": {"queue_maxsize": 8},
            }
        )
        ctx = ServiceContext(path)
        assert ctx.config.mqtt.address == "10.1.1.1"
        assert ctx.broker_host() == "10.1.1.1"
        assert ctx.config.logger.level == "DEBUG"
        assert ctx.config.driver.strict_access_config is True
        assert ctx.config.mailbox.queue_maxsize == 8

    @pytest.mark.parametrize("content", ["- a\n- b\n", {"mqtt": {"port": 0}}])
    def test_invalid(self, service_file, content):
        with pytest.raises(ConfigMalformedError):
            ServiceContext(service_file(content))

    def test_load_config_into_custom_model(self, service_file):
        class Custom(BaseModel):
            serial_port: str = "/dev/ttyS0"
            retries: int = 1

        ctx = ServiceContext(service_file({"retries": 3, "mqtt": {"port": 1883}}))
        custom = ctx.load_config(Custom)
        assert custom.retries == 3
        assert custom.serial_port == "/dev/ttyS0"


class TestTermination:
    def test_stop_releases_wait(self, tmp_path, monkeypatch):
        ctx = ServiceContext(tmp_path / "missing.yml")
        monkeypatch.setattr(ctx, "install_signal_handlers", lambda: None)
        assert ctx.wait(timeout=0.01) is False
        ctx.stop()
        assert ctx.stopped()
        assert ctx.wait(timeout=0.01) is True


class TestRun:
    def test_handler_receives_context(self, service_file):
        seen = []
        assert run(seen.append, ["-c", service_file({"driver": {"name": "d1"}})]) == 0
        assert seen[0].config.driver.name == "d1"

    def test_handler_error_exits_1(self, tmp_path, caplog):
        def failing(ctx):
            raise RuntimeError("boom")

        assert run(failing, ["--config", str(tmp_path / "missing.yml")]) == 1
        assert "boom" in caplog.text

    def test_bad_config_exits_1(self, service_file):
        assert run(lambda ctx: None, ["-c", service_file("- not a mapping\n")]) == 1
