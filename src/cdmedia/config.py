"""Configuration management for cdmedia."""

from pathlib import Path

import tomli
from pydantic import BaseModel, Field, ValidationError, field_validator

from cdmedia.error_handling import ConfigurationError


class CdmediaConfig(BaseModel):
    """Main configuration for cdmedia."""

    # External reader
    cdrdao_binary: str = Field(default="cdrdao")
    cdrdao_driver: str = Field(default="generic-mmc:0x20000")
    paranoia_mode_accurate: int = Field(default=3)  # full audio verification
    paranoia_mode_fast: int = Field(default=0)  # no audio verification

    # Hardware
    optical_drive: str = Field(default="/dev/sr0")

    # Bundle layout
    bundle_extension: str = Field(default=".cdmedia")
    data_file_name: str = Field(default="data.bin")
    cue_file_name: str = Field(default="tracks.cue")
    toc_file_name: str = Field(default="data.toc")

    # Process handling
    cancel_grace_period: float = Field(default=10.0)  # seconds before SIGKILL
    tool_output_tail: int = Field(default=20)  # lines kept for failure details

    # Paths
    log_dir: Path = Field(default=Path("~/.local/share/cdmedia/logs"))

    @field_validator("log_dir", mode="before")
    @classmethod
    def expand_paths(cls, v: Path | str) -> Path:
        """Expand user home directory in paths."""
        if isinstance(v, str):
            v = Path(v)
        return v.expanduser().resolve()

    @field_validator("data_file_name", "cue_file_name", "toc_file_name")
    @classmethod
    def bare_file_name(cls, v: str) -> str:
        """Bundle members live directly inside the bundle directory."""
        if not v or Path(v).name != v or v in (".", ".."):
            msg = f"'{v}' must be a plain file name"
            raise ValueError(msg)
        return v

    @field_validator("bundle_extension")
    @classmethod
    def dotted_extension(cls, v: str) -> str:
        """Validate the bundle extension."""
        if not v.startswith(".") or len(v) < 2 or "/" in v:
            msg = f"Bundle extension '{v}' must look like '.cdmedia'"
            raise ValueError(msg)
        return v

    @field_validator("paranoia_mode_accurate", "paranoia_mode_fast")
    @classmethod
    def paranoia_range(cls, v: int) -> int:
        """cdrdao accepts paranoia modes 0 through 3."""
        if not 0 <= v <= 3:
            msg = f"Paranoia mode {v} is outside 0-3"
            raise ValueError(msg)
        return v

    @field_validator("cancel_grace_period")
    @classmethod
    def positive_grace(cls, v: float) -> float:
        """Validate the cancellation grace period."""
        if v <= 0:
            msg = "cancel_grace_period must be positive"
            raise ValueError(msg)
        return v

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        self.log_dir.mkdir(parents=True, exist_ok=True)


def load_config(config_path: Path | None = None) -> CdmediaConfig:
    """Load configuration from file or defaults."""
    if config_path is None:
        possible_paths = [
            Path.home() / ".config" / "cdmedia" / "config.toml",  # User config
            Path.cwd() / "cdmedia.toml",  # Current directory
        ]

        for path in possible_paths:
            if path.exists():
                config_path = path
                break

    if config_path and config_path.exists():
        try:
            with open(config_path, "rb") as f:
                config_data = tomli.load(f)
            return CdmediaConfig(**config_data)
        except tomli.TOMLDecodeError as e:
            msg = f"Configuration file is not valid TOML: {e}"
            raise ConfigurationError(
                msg, config_path=config_path, original_error=e
            ) from e
        except ValidationError as e:
            msg = "Configuration file contains invalid settings"
            raise ConfigurationError(
                msg,
                config_path=config_path,
                details=str(e),
                original_error=e,
            ) from e
    # Use defaults
    return CdmediaConfig()


def create_sample_config(path: Path) -> None:
    """Create a sample configuration file."""
    sample_config = """# cdmedia Configuration
# =====================

# External reader
cdrdao_binary = "cdrdao"                 # Path or name of the cdrdao executable
cdrdao_driver = "generic-mmc:0x20000"    # cdrdao driver string for the drive
paranoia_mode_accurate = 3               # Audio read checking with error correction (0-3)
paranoia_mode_fast = 0                   # Audio read checking without error correction (0-3)

# Hardware
optical_drive = "/dev/sr0"               # Default device path for the optical drive

# Bundle layout
bundle_extension = ".cdmedia"            # Extension of published bundle directories
data_file_name = "data.bin"              # Raw sector data inside the bundle
cue_file_name = "tracks.cue"             # Track layout sheet inside the bundle
toc_file_name = "data.toc"               # Intermediate cdrdao TOC (never published)

# Process handling
cancel_grace_period = 10.0               # Seconds to wait after SIGTERM before SIGKILL
tool_output_tail = 20                    # Output lines attached to unexplained failures

# Paths
log_dir = "~/.local/share/cdmedia/logs"  # Log files
"""

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write(sample_config)
