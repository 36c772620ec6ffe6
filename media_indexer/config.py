from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigError
from .models import AccessType


class StoreSettings(BaseModel):
    path: Path = Field(default=Path("~/.local/share/media-indexer/library.sqlite3"), validate_default=True)

    @field_validator("path", mode="before")
    @classmethod
    def _expand_path(cls, value: str | Path) -> Path:
        return Path(value).expanduser().resolve()


class ScanSettings(BaseModel):
    extensions: List[str] = Field(default_factory=lambda: [".mp3"])
    ftp_timeout: float = 30
    upnp_timeout: float = 10
    upnp_page_size: int = Field(default=200, gt=0)
    update_in_place: bool = False
    sync_window: int = Field(default=4096, gt=0)

    @field_validator("extensions", mode="before")
    @classmethod
    def _normalise_extensions(cls, values: List[str]) -> List[str]:
        return [value.lower() if value.startswith(".") else f".{value.lower()}" for value in values]


class SourceSettings(BaseModel):
    name: str
    access: AccessType
    folder: str = ""
    address: str = ""
    port: int = 0

    @model_validator(mode="after")
    def _check_location(self) -> "SourceSettings":
        if self.access is AccessType.LOCAL:
            if not self.folder:
                raise ValueError(f"local source {self.name!r} needs a folder")
            self.folder = str(Path(self.folder).expanduser())
        elif not self.address:
            raise ValueError(f"{self.access.value} source {self.name!r} needs an address")
        return self


class LibrarySettings(BaseModel):
    name: str
    sources: List[SourceSettings] = Field(default_factory=list)


class Settings(BaseModel):
    store: StoreSettings = StoreSettings()
    scan: ScanSettings = ScanSettings()
    active_library: Optional[str] = None
    libraries: List[LibrarySettings] = Field(default_factory=list)

    @classmethod
    def load(cls, path: Path) -> "Settings":
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
        try:
            return cls.model_validate(raw or {})
        except ValidationError as exc:
            raise ConfigError(f"invalid configuration in {path}: {exc}") from exc

    def library_named(self, name: Optional[str]) -> LibrarySettings:
        wanted = name or self.active_library
        if wanted is None:
            if not self.libraries:
                raise ConfigError("no libraries configured")
            return self.libraries[0]
        for library in self.libraries:
            if library.name.casefold() == wanted.casefold():
                return library
        raise ConfigError(f"unknown library {wanted!r}")


def find_config(explicit_path: Optional[Path]) -> Path:
    if explicit_path:
        return explicit_path
    cwd = Path.cwd()
    for candidate in (cwd / "config.yaml", cwd / "config.yml"):
        if candidate.exists():
            return candidate
    raise FileNotFoundError("Could not find config.yaml - pass --config explicitly.")
