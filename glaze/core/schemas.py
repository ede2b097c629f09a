from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

LEVEL_ALIASES = {"warn": "warning", "fatal": "critical"}

LogLevel = Literal["debug", "info", "warning", "error", "critical", "silent"]


class LoggerOptions(BaseModel):
    name: str = "glaze"
    level: LogLevel | None = None
    env: str | None = None

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("level", mode="before")
    @classmethod
    def _lowercase_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            return LEVEL_ALIASES.get(value, value)
        return value
