"""
Pydantic models for the site-wide admin configuration.

The stored JSON uses PascalCase keys (``SiteConfig``, ``SourceConfig`` ...);
Python code uses the snake_case attribute names. Always dump with
``by_alias=True`` before persisting.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .records import UserRole

Origin = Literal["config", "custom"]


class _AliasedModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SiteConfig(_AliasedModel):
    """General site settings. Keys this model doesn't know are kept as-is."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    site_name: str = Field(default="MoonTV", alias="SiteName")
    announcement: str = Field(default="", alias="Announcement")
    search_downstream_max_page: int = Field(
        default=5, ge=1, alias="SearchDownstreamMaxPage"
    )
    site_interface_cache_time: int = Field(
        default=7200, ge=0, alias="SiteInterfaceCacheTime"
    )
    disable_yellow_filter: bool = Field(default=False, alias="DisableYellowFilter")
    config_file: str = Field(default="", alias="ConfigFile")


class SourceEntry(_AliasedModel):
    """A video source the site can search."""

    key: str
    name: str
    api: str
    detail: Optional[str] = None
    origin: Origin = Field(default="custom", alias="from")
    disabled: bool = False


class CustomCategory(_AliasedModel):
    name: Optional[str] = None
    type: Literal["movie", "tv"]
    query: str
    origin: Origin = Field(default="custom", alias="from")
    disabled: bool = False

    @property
    def merge_key(self) -> str:
        """Identity used when merging imported categories."""
        return f"{self.query}:{self.type}"


class UserEntry(_AliasedModel):
    username: str
    role: UserRole = UserRole.USER
    banned: bool = False


class UserConfig(_AliasedModel):
    allow_register: bool = Field(default=False, alias="AllowRegister")
    users: list[UserEntry] = Field(default_factory=list, alias="Users")


class AdminConfig(_AliasedModel):
    """
    The aggregate admin configuration.

    Legacy blobs stored ``ConfigFile`` next to ``SiteConfig``; it is folded into
    ``SiteConfig.ConfigFile`` on load so the normalized layout keeps it.
    """

    site_config: SiteConfig = Field(default_factory=SiteConfig, alias="SiteConfig")
    user_config: UserConfig = Field(default_factory=UserConfig, alias="UserConfig")
    source_config: list[SourceEntry] = Field(
        default_factory=list, alias="SourceConfig"
    )
    custom_categories: list[CustomCategory] = Field(
        default_factory=list, alias="CustomCategories"
    )

    @model_validator(mode="before")
    @classmethod
    def _fold_top_level_config_file(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "ConfigFile" not in data:
            return data
        data = dict(data)
        config_file = data.pop("ConfigFile")
        site = data.get("SiteConfig", data.get("site_config"))
        if isinstance(site, dict) and not site.get("ConfigFile"):
            data["SiteConfig"] = {**site, "ConfigFile": config_file or ""}
        elif site is None:
            data["SiteConfig"] = {"ConfigFile": config_file or ""}
        return data

    @property
    def config_file(self) -> str:
        return self.site_config.config_file

    def to_storage(self) -> dict[str, Any]:
        """Serializes with the stored (PascalCase) field names."""
        return self.model_dump(mode="json", by_alias=True)
