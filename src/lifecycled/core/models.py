from datetime import datetime
from pathlib import Path
from typing import Annotated, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lifecycled.core.tags import parse_tags

AUTOSCALING_TERMINATING = "autoscaling:EC2_INSTANCE_TERMINATING"
SPOT_TERMINATION = "ec2:SPOT_INSTANCE_TERMINATION"


class AutoscalingTermination(BaseModel):
    """
    Termination notice issued by an autoscaling lifecycle hook.
    The (group, hook, instance, token) tuple identifies the paused action.
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal["autoscaling"] = "autoscaling"
    instance_id: str
    group_name: str
    hook_name: str
    action_token: str
    transition: str = AUTOSCALING_TERMINATING


class SpotTermination(BaseModel):
    """Spot reclamation notice read from instance metadata."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["spot"] = "spot"
    instance_id: str
    termination_time: datetime
    transition: str = SPOT_TERMINATION


Notice = Annotated[Union[AutoscalingTermination, SpotTermination], Field(discriminator="kind")]


class Envelope(BaseModel):
    """Outer SNS envelope delivered through the relay queue."""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(default="", alias="Type")
    subject: str = Field(default="", alias="Subject")
    time: Optional[datetime] = Field(default=None, alias="Time")
    message: str = Field(alias="Message")


class LifecycleMessage(BaseModel):
    """Autoscaling lifecycle payload embedded in the envelope's Message string."""

    model_config = ConfigDict(extra="ignore")

    time: Optional[datetime] = Field(default=None, alias="Time")
    group_name: str = Field(
        default="",
        validation_alias=AliasChoices("AutoScalingGroupName", "AutoscalingGroupName"),
    )
    instance_id: str = Field(default="", alias="EC2InstanceId")
    action_token: str = Field(default="", alias="LifecycleActionToken")
    transition: str = Field(default="", alias="LifecycleTransition")
    hook_name: str = Field(default="", alias="LifecycleHookName")

    def to_notice(self) -> AutoscalingTermination:
        return AutoscalingTermination(
            instance_id=self.instance_id,
            group_name=self.group_name,
            hook_name=self.hook_name,
            action_token=self.action_token,
            transition=self.transition,
        )


class DaemonSettings(BaseSettings):
    """
    Daemon configuration (flags, the 'lifecycled' section of lifecycled.yaml,
    or LIFECYCLED_* environment variables).
    """
    model_config = SettingsConfigDict(env_prefix="LIFECYCLED_", extra="ignore")

    instance_id: Optional[str] = None
    sns_topic: Optional[str] = None
    spot_listener: bool = True
    spot_listener_interval: float = Field(default=5.0, gt=0)
    autoscaling_heartbeat_interval: float = Field(default=10.0, gt=0)
    queue_wait_seconds: int = Field(default=20, ge=1, le=20)
    tags: str = ""
    handler: Optional[Path] = None
    handler_args: List[str] = Field(default_factory=list)
    json_logging: bool = False
    debug: bool = False
    log_file: Optional[Path] = None
    cloudwatch_group: Optional[str] = None
    cloudwatch_stream: Optional[str] = None
    exit_on_handler_error: bool = False

    @field_validator("tags")
    @classmethod
    def _validate_tags(cls, value: str) -> str:
        parse_tags(value)
        return value
