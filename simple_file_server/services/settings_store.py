import logging
from enum import Enum
from pathlib import Path
from typing import List, NamedTuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger("simple_file_server")

MIB = 1 << 20


class SettingsError(Exception):
    """Base class for settings bootstrap failures."""


class SettingsNotFoundError(SettingsError):
    pass


class SettingsParseError(SettingsError):
    pass


class Settings(BaseModel):
    """Operator policy persisted in settings.json.

    Limits are stored in mebibytes, the way the operator writes them. Byte
    values are derived once by the upload handler.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    folder_path: str = Field("./uploads", alias="FolderPath")
    size_limit: int = Field(128, ge=0, alias="SizeLimit")
    single_file_size_limit: int = Field(8, ge=0, alias="SingleFileSizeLimit")
    read_only: bool = Field(False, alias="ReadOnly")
    forbidden_extensions: List[str] = Field(default_factory=lambda: [".html"], alias="ForbiddenExtensions")

    @field_validator('forbidden_extensions')
    @classmethod
    def validate_extensions(cls, v):
        for ext in v:
            if not ext.startswith(".") or len(ext) < 2:
                raise ValueError(f"Forbidden extension must look like '.ext', got {ext!r}")
        return v

    @model_validator(mode='after')
    def validate_limits(self):
        if self.single_file_size_limit > self.size_limit:
            raise ValueError(
                f"SingleFileSizeLimit ({self.single_file_size_limit} MB) "
                f"exceeds SizeLimit ({self.size_limit} MB)"
            )
        return self

    def is_forbidden(self, extension: str) -> bool:
        """Case-insensitive match of a file suffix against the forbidden set."""
        extension = extension.lower()
        return any(extension == ext.lower() for ext in self.forbidden_extensions)


class StartupStatus(str, Enum):
    RAN_WITH_DEFAULTS = "ran_with_defaults"
    LOADED_EXISTING = "loaded_existing"


class StartupResult(NamedTuple):
    status: StartupStatus
    settings: Settings


def defaults() -> Settings:
    return Settings()


def load(path: Union[str, Path]) -> Settings:
    """Read settings from a JSON file.

    Raises:
        SettingsNotFoundError: the file does not exist
        SettingsParseError: the file cannot be read, is not JSON, or fails validation
    """
    path = Path(path)
    try:
        data = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise SettingsNotFoundError(f"Settings file {path} does not exist")
    except OSError as e:
        raise SettingsParseError(f"Failed to read settings from {path}: {e}") from e

    try:
        return Settings.model_validate_json(data)
    except ValidationError as e:
        raise SettingsParseError(f"Failed to load settings from {path}: {e}") from e


def save(settings: Settings, path: Union[str, Path]) -> None:
    """Write settings as JSON, overwriting any existing file."""
    Path(path).write_text(settings.model_dump_json(by_alias=True, indent=4) + "\n", encoding="utf-8")


def load_or_bootstrap(path: Union[str, Path]) -> StartupResult:
    """Load settings, or write the defaults when no settings file exists yet.

    A RAN_WITH_DEFAULTS result means the operator is expected to review the
    freshly written file and start the server again.
    """
    try:
        settings = load(path)
    except SettingsNotFoundError:
        logger.info(f"File {path} does not exist. Writing default settings ...")
        settings = defaults()
        save(settings, path)
        logger.info(f"Written default settings to {path}.")
        return StartupResult(StartupStatus.RAN_WITH_DEFAULTS, settings)

    logger.info(f"Loaded settings from {path}")
    return StartupResult(StartupStatus.LOADED_EXISTING, settings)
