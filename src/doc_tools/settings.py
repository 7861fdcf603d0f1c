import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from . import __version__

_TRUTHY = {"1", "true", "yes", "on"}


def env_flag(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def default_poppler_path() -> str | None:
    """Directory holding pdftoppm when POPPLER_PATH is not set.

    Linux distributions install poppler-utils under /usr/bin; elsewhere the
    binary is looked up on PATH.
    """
    if sys.platform.startswith("linux"):
        return "/usr/bin"
    return None


@dataclass(frozen=True)
class Settings:
    """Startup-time configuration injected into the staging area and adapters."""

    staging_dir: Path = Path("./uploads")
    max_upload_mb: int = 100
    soffice_bin: str = "soffice"
    poppler_path: str | None = None
    convert_timeout_sec: int = 0
    version: str = __version__
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        poppler_path = env.get("POPPLER_PATH") or default_poppler_path()
        return cls(
            staging_dir=Path(env.get("STAGING_DIR", "./uploads")).resolve(),
            max_upload_mb=int(env.get("MAX_UPLOAD_MB", "100")),
            soffice_bin=env.get("SOFFICE_BIN", "soffice"),
            poppler_path=poppler_path,
            convert_timeout_sec=int(env.get("CONVERT_TIMEOUT_SEC", "0")),
            version=env.get("DOC_TOOLS_VERSION", __version__),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def convert_timeout(self) -> float | None:
        # 0 leaves external processes unbounded
        return float(self.convert_timeout_sec) if self.convert_timeout_sec > 0 else None


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
