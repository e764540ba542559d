"""Configuration settings for isobuild.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

import sys
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_config_path() -> Path:
    """Return the default build configuration path.

    The program path with its extension replaced by ``.ini``.
    """
    return Path(sys.argv[0]).with_suffix(".ini")


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the BUILD_ prefix,
    so ``BUILD_CONFIG_PATH`` and ``BUILD_OUTPUT_DIR`` map onto
    ``config_path`` and ``output_dir``.
    """

    model_config = SettingsConfigDict(
        env_prefix="BUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    config_path: Path = Field(
        default_factory=_default_config_path,
        description="Path to the INI file declaring builds",
    )
    output_dir: Path = Field(
        default=Path("."),
        description="Directory holding layer archives and ISO images",
    )
    base_layers_dir: Path | None = Field(
        default=None,
        description="Directory of base layers (defaults to <config dir>/base_layers)",
    )
    isolinux_dir: Path | None = Field(
        default=None,
        description="Directory with isolinux binaries (defaults to <config dir>/isolinux)",
    )
    tmp_dir: Path | None = Field(
        default=None,
        description="Parent of the per-run scratch directory (uses system default if not set)",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    require_root: bool = Field(
        default=True,
        description="Refuse to build unless running as root",
    )

    # External tools
    mkisofs_options: str = Field(
        default="-input-charset utf-8 -volid ubuntu",
        description="Extra options passed to mkisofs",
    )
    chroot_path: str = Field(
        default="/bin:/sbin:/usr/bin:/usr/sbin",
        description="PATH for scripts run inside the chroot",
    )
    chroot_lang: str = Field(
        default="C",
        description="LANG for scripts run inside the chroot",
    )

    # Timeouts (in seconds)
    command_timeout: int | None = Field(
        default=None,
        ge=1,
        description="Timeout for each external command (no timeout if not set)",
    )
    lock_timeout: float = Field(
        default=300,
        ge=0,
        description="Timeout for acquiring a layer archive lock",
    )

    @property
    def layers_root(self) -> Path:
        """Effective base layers directory."""
        if self.base_layers_dir is not None:
            return self.base_layers_dir
        return self.config_path.parent / "base_layers"

    @property
    def loader_dir(self) -> Path:
        """Effective isolinux directory."""
        if self.isolinux_dir is not None:
            return self.isolinux_dir
        return self.config_path.parent / "isolinux"


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
