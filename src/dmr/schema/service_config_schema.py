from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dmr.model.mailbox_policy import MailboxPolicyModel


class MqttClientConfig(BaseModel):
    """Broker connection of the service"""

    model_config = ConfigDict(extra="ignore")

    address: str | None = Field(default=None, description="Broker host; resolved from run mode when empty")
    port: int = Field(default=1883, ge=1, le=65535)
    username: str | None = None
    password: str | None = None
    clientid: str = Field(default="", description="MQTT client id; generated by the broker when empty")
    cleansession: bool = True
    keepalive: int = Field(default=60, ge=0, description="Keepalive (seconds)")
    timeout: float = Field(default=30.0, gt=0, description="Connect timeout (seconds)")


class LoggerConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    to_file: bool = False
    dir: str = "logs"
    filename: str = "dmr"

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class DriverSection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(default="", description="Driver name keying the configuration tables")
    config_dir: str = Field(default="etc/baetyl", description="Directory holding the three driver YAML files")
    strict_access_config: bool = Field(default=False, description="Surface access config decode failures")


class ServiceConfig(BaseModel):
    """Service configuration (etc/baetyl/service.yml)"""

    model_config = ConfigDict(extra="allow")

    mqtt: MqttClientConfig = Field(default_factory=MqttClientConfig)
    logger: LoggerConfig = Field(default_factory=LoggerConfig)
    driver: DriverSection = Field(default_factory=DriverSection)
    mailbox: MailboxPolicyModel = Field(default_factory=MailboxPolicyModel)
