"""
Service host for a driver process.

`run(handler)` is the process entry point: it parses `-c/--config`, loads
`.env`, configures logging, builds a ServiceContext and calls
`handler(ctx)`. Any exception raised by the handler is logged and turned into
exit code 1.
"""

import argparse
import logging
import os
import signal
import threading
from pathlib import Path
from typing import Callable, TypeVar

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from dmr.exception import ConfigMalformedError, ConfigNotFoundError
from dmr.schema.service_config_schema import ServiceConfig
from dmr.util.config_loader import load_yaml_file, resolve_env_placeholders
from dmr.util.logger_config import ServiceIdentityFilter, setup_logging

DEFAULT_CONFIG_FILE = "etc/baetyl/service.yml"

ENV_HOST_PATH_LIB = "BAETYL_HOST_PATH_LIB"
ENV_RUN_MODE = "BAETYL_RUN_MODE"
ENV_NODE_NAME = "BAETYL_NODE_NAME"
ENV_APP_NAME = "BAETYL_APP_NAME"
ENV_SERVICE_NAME = "BAETYL_SERVICE_NAME"

DEFAULT_HOST_PATH_LIB = "/var/lib/baetyl"
RUN_MODE_NATIVE = "native"
RUN_MODE_KUBE = "kube"
NATIVE_BROKER_HOST = "127.0.0.1"
KUBE_BROKER_HOST = "baetyl-broker.baetyl-edge-system"

T = TypeVar("T", bound=BaseModel)

logger = logging.getLogger("ServiceContext")


def host_path_lib() -> str:
    return os.getenv(ENV_HOST_PATH_LIB) or DEFAULT_HOST_PATH_LIB


def run_mode() -> str:
    mode = (os.getenv(ENV_RUN_MODE) or RUN_MODE_KUBE).strip().lower()
    return RUN_MODE_NATIVE if mode == RUN_MODE_NATIVE else RUN_MODE_KUBE


def broker_host() -> str:
    return NATIVE_BROKER_HOST if run_mode() == RUN_MODE_NATIVE else KUBE_BROKER_HOST


def node_name() -> str:
    return os.getenv(ENV_NODE_NAME, "")


def app_name() -> str:
    return os.getenv(ENV_APP_NAME, "")


def service_name() -> str:
    return os.getenv(ENV_SERVICE_NAME, "")


class ServiceContext:
    def __init__(self, config_file: str | Path = DEFAULT_CONFIG_FILE):
        self.config_file = str(config_file)
        self.config: ServiceConfig = self._load_service_config()
        self._stop = threading.Event()

        self._logger = logging.getLogger(service_name() or "dmr")
        if not any(isinstance(f, ServiceIdentityFilter) for f in self._logger.filters):
            self._logger.addFilter(ServiceIdentityFilter(node_name(), app_name(), service_name()))

    def _load_service_config(self) -> ServiceConfig:
        try:
            raw = load_yaml_file(self.config_file)
        except ConfigNotFoundError:
            logger.info(f"[Service] Config file {self.config_file} not found, using defaults")
            return ServiceConfig()
        return self._validate(ServiceConfig, raw)

    def _validate(self, model_cls: type[T], raw) -> T:
        raw = resolve_env_placeholders(raw) or {}
        if not isinstance(raw, dict):
            raise ConfigMalformedError(f"{self.config_file}: top level must be a mapping", self.config_file)
        try:
            return model_cls.model_validate(raw)
        except ValidationError as e:
            raise ConfigMalformedError(f"{self.config_file}: {e}", self.config_file) from e

    def load_config(self, model_cls: type[T]) -> T:
        """Validate the service config file into a caller-supplied model."""
        return self._validate(model_cls, load_yaml_file(self.config_file))

    def log(self) -> logging.Logger:
        return self._logger

    # ------------------------------------------------------------------ #
    # Environment                                                        #
    # ------------------------------------------------------------------ #
    def node_name(self) -> str:
        return node_name()

    def app_name(self) -> str:
        return app_name()

    def service_name(self) -> str:
        return service_name()

    def run_mode(self) -> str:
        return run_mode()

    def host_path_lib(self) -> str:
        return host_path_lib()

    def broker_host(self) -> str:
        return self.config.mqtt.address or broker_host()

    # ------------------------------------------------------------------ #
    # Termination                                                        #
    # ------------------------------------------------------------------ #
    def install_signal_handlers(self) -> None:
        """Route SIGINT/SIGTERM to stop(); only possible from the main thread."""
        if threading.current_thread() is not threading.main_thread():
            return
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, self._handle_signal)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until SIGINT/SIGTERM or stop(). Returns True when stopped."""
        self.install_signal_handlers()
        return self._stop.wait(timeout)

    def stop(self) -> None:
        self._stop.set()

    def stopped(self) -> bool:
        return self._stop.is_set()

    def _handle_signal(self, signum, _frame):
        self._logger.info(f"[Service] Got {signal.Signals(signum).name}, shutting down")
        self._stop.set()


def run(handler: Callable[[ServiceContext], None], argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_FILE, help="Path to service config YAML")
    args = parser.parse_args(argv)

    load_dotenv()

    try:
        ctx = ServiceContext(args.config)
        logger_config = ctx.config.logger
        setup_logging(
            log_level=logger_config.level,
            log_to_file=logger_config.to_file,
            log_dir=logger_config.dir,
            log_base_filename=logger_config.filename,
            identity=ServiceIdentityFilter(node_name(), app_name(), service_name()),
        )
        ctx.log().info(f"[Service] Starting with config {args.config} (mode={run_mode()})")
        handler(ctx)
    except Exception as e:
        logger.exception(f"[Service] Service exited with error: {e}")
        return 1

    logger.info("[Service] Service stopped")
    return 0
