"""
Driver configuration loader.

Reads the three driver files from one directory:
    sub_devices.yml      {driver, devices: [DeviceInfo]}
    models.yml           {<modelName>: [DeviceProperty]}
    access_template.yml  {<templateName>: AccessTemplate}

All three files are parsed and cross-checked before a DriverTables is built,
so a failure never leaves half a driver behind.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dmr.exception import ConfigMalformedError, ConfigNotFoundError
from dmr.schema.access_template_schema import AccessTemplate
from dmr.schema.device_model_schema import DeviceProperty
from dmr.schema.device_schema import DeviceInfo, SubDevicesFileConfig

logger = logging.getLogger("DriverConfigLoader")

SUB_DEVICES_FILE = "sub_devices.yml"
MODELS_FILE = "models.yml"
ACCESS_TEMPLATE_FILE = "access_template.yml"

_ENV_PATTERN = re.compile(r"\$\{(\w+)(?::-([^\}]*))?\}")


def load_yaml_file(path: str | Path) -> Any:
    path = Path(path)
    if not path.is_file():
        raise ConfigNotFoundError(f"config file not found: {path}", str(path))
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigMalformedError(f"invalid yaml in {path}: {e}", str(path)) from e


def resolve_env_placeholders(value: Any) -> Any:
    """Replace `${VAR}` / `${VAR:-default}` inside string values, recursively."""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.getenv(m.group(1)) or (m.group(2) or ""), value)
    if isinstance(value, dict):
        return {k: resolve_env_placeholders(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env_placeholders(v) for v in value]
    return value


class DriverTables(BaseModel):
    """Immutable lookup tables of one driver."""

    model_config = ConfigDict(frozen=True)

    driver: str
    driver_config: str = Field(default="", description="`driver` value of sub_devices.yml")
    devices: dict[str, DeviceInfo] = Field(default_factory=dict)
    device_models: dict[str, list[DeviceProperty]] = Field(default_factory=dict)
    access_templates: dict[str, AccessTemplate] = Field(default_factory=dict)


class DriverConfigLoader:

    @staticmethod
    def load(path: str | Path, driver: str, strict_access_config: bool = False) -> DriverTables:
        config_dir = Path(path)
        device_models = DriverConfigLoader._load_device_models(config_dir / MODELS_FILE)
        access_templates = DriverConfigLoader._load_access_templates(config_dir / ACCESS_TEMPLATE_FILE)
        sub_devices = DriverConfigLoader._load_sub_devices(
            config_dir / SUB_DEVICES_FILE, strict_access_config=strict_access_config
        )

        if sub_devices.driver and sub_devices.driver != driver:
            logger.warning(
                f"[Config] {SUB_DEVICES_FILE} declares driver={sub_devices.driver!r}, loading as {driver!r}"
            )

        devices: dict[str, DeviceInfo] = {}
        for device in sub_devices.devices:
            if device.device_model not in device_models:
                logger.warning(
                    f"[Config] Drop device={device.name}: device model {device.device_model!r} not found"
                )
                continue
            if device.access_template not in access_templates:
                logger.warning(
                    f"[Config] Drop device={device.name}: access template {device.access_template!r} not found"
                )
                continue
            devices[device.name] = device

        tables = DriverTables(
            driver=driver,
            driver_config=sub_devices.driver,
            devices=devices,
            device_models=device_models,
            access_templates=access_templates,
        )
        logger.info(
            f"[Config] Loaded driver={driver}: {len(devices)} devices, "
            f"{len(device_models)} models, {len(access_templates)} access templates"
        )
        return tables

    @staticmethod
    def _load_sub_devices(path: Path, strict_access_config: bool = False) -> SubDevicesFileConfig:
        raw = resolve_env_placeholders(load_yaml_file(path)) or {}
        if not isinstance(raw, dict):
            raise ConfigMalformedError(f"{path}: top level must be a mapping", str(path))
        try:
            return SubDevicesFileConfig.model_validate(
                raw, context={"strict_access_config": strict_access_config}
            )
        except ValidationError as e:
            raise ConfigMalformedError(f"{path}: {e}", str(path)) from e

    @staticmethod
    def _load_device_models(path: Path) -> dict[str, list[DeviceProperty]]:
        raw = load_yaml_file(path) or {}
        if not isinstance(raw, dict):
            raise ConfigMalformedError(f"{path}: top level must be a mapping", str(path))

        models: dict[str, list[DeviceProperty]] = {}
        for model_name, properties in raw.items():
            if properties is None:
                properties = []
            if not isinstance(properties, list):
                raise ConfigMalformedError(f"{path}: model {model_name!r} must be a list of properties", str(path))
            try:
                models[str(model_name)] = [DeviceProperty.model_validate(prop) for prop in properties]
            except ValidationError as e:
                raise ConfigMalformedError(f"{path}: model {model_name!r}: {e}", str(path)) from e
        return models

    @staticmethod
    def _load_access_templates(path: Path) -> dict[str, AccessTemplate]:
        raw = load_yaml_file(path) or {}
        if not isinstance(raw, dict):
            raise ConfigMalformedError(f"{path}: top level must be a mapping", str(path))

        templates: dict[str, AccessTemplate] = {}
        for template_name, template in raw.items():
            if template is None:
                template = {}
            if not isinstance(template, dict):
                raise ConfigMalformedError(f"{path}: template {template_name!r} must be a mapping", str(path))
            # the map key is authoritative for the template name
            try:
                templates[str(template_name)] = AccessTemplate.model_validate({**template, "name": str(template_name)})
            except ValidationError as e:
                raise ConfigMalformedError(f"{path}: template {template_name!r}: {e}", str(path)) from e
        return templates
