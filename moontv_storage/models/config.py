"""
Pydantic model for the storage configuration.
Provides validation for the backend selection and its connection settings.
"""

from enum import Enum

from pydantic import BaseModel, field_validator, model_validator


class StorageType(str, Enum):
    """The backing store selected at process start."""

    MEMORY = "memory"
    REDIS = "redis"
    UPSTASH = "upstash"
    RELATIONAL = "relational"

    @classmethod
    def parse(cls, value: str) -> "StorageType":
        """Accepts the canonical names plus the names used by older deployments."""
        normalized = (value or "").strip().lower()
        try:
            return STORAGE_TYPE_ALIASES[normalized]
        except KeyError:
            valid = ", ".join(sorted(STORAGE_TYPE_ALIASES))
            raise ValueError(
                f"Unknown storage type '{value}'. Expected one of: {valid}."
            ) from None


STORAGE_TYPE_ALIASES = {
    "memory": StorageType.MEMORY,
    "localstorage": StorageType.MEMORY,
    "redis": StorageType.REDIS,
    "keyvalue-remote": StorageType.REDIS,
    "upstash": StorageType.UPSTASH,
    "keyvalue-rest": StorageType.UPSTASH,
    "relational": StorageType.RELATIONAL,
    "d1": StorageType.RELATIONAL,
    "sqlite": StorageType.RELATIONAL,
}


class StorageConfig(BaseModel):
    """A validated configuration for the storage layer."""

    storage_type: StorageType = StorageType.MEMORY

    # Connection settings
    redis_url: str = "redis://localhost:6379"
    upstash_url: str = ""
    upstash_token: str = ""
    sqlite_path: str = "moontv.sqlite"

    # Resilience
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("storage_type", mode="before")
    @classmethod
    def parse_storage_type(cls, v):
        if isinstance(v, StorageType):
            return v
        return StorageType.parse(str(v))

    @field_validator("retry_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1 or v > 10:
            raise ValueError("Retry attempts must be between 1 and 10.")
        return v

    @field_validator("retry_base_delay", "retry_max_delay")
    @classmethod
    def validate_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Retry delays cannot be negative.")
        return v

    @model_validator(mode="after")
    def validate_backend_settings(self) -> "StorageConfig":
        """Checks that the selected backend has what it needs to connect."""
        if self.storage_type == StorageType.UPSTASH and not (
            self.upstash_url and self.upstash_token
        ):
            raise ValueError(
                "UPSTASH_URL and UPSTASH_TOKEN must be set for the upstash backend."
            )
        if self.storage_type == StorageType.REDIS and not self.redis_url:
            raise ValueError("A redis_url is required for the redis backend.")
        if self.storage_type == StorageType.RELATIONAL and not self.sqlite_path:
            raise ValueError("A sqlite_path is required for the relational backend.")
        return self

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        return set(cls.model_fields)
