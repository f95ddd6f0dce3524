"""Configuration for the SiliconFlow Image MCP server.

All environment lookups happen once, in :meth:`ServiceConfig.from_env`. The
resulting object is immutable and passed explicitly to the service and the
file store, so tests never need to mutate the process environment.
"""
from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Tuple

# Environment variable names
API_KEY_ENV = "SILICONFLOW_API_KEY"
API_URL_ENV = "SILICONFLOW_API_URL"
IMAGE_DIR_ENV = "SILICONFLOW_IMAGE_DIR"
OUTPUT_DIR_ENV = "SILICONFLOW_OUTPUT_DIR"
MOCK_ENV = "SILICONFLOW_MOCK"
LOG_LEVEL_ENV = "SILICONFLOW_LOG_LEVEL"

DEFAULT_BASE_URL = "https://api.siliconflow.cn/v1"
# Subfolder of the system temp directory used when no output dir is configured
OUTPUT_SUBDIR = "siliconflow-images"

# Look for .env in the project root (parent directory of this file's parent)
DOTENV_CANDIDATES = [
    Path(__file__).resolve().parents[1] / ".env",
    Path(__file__).resolve().parents[1] / ".env.local",
]


def _prime_dotenv_env() -> None:
    """Load environment variables from .env files for local development."""
    for env_file in DOTENV_CANDIDATES:
        try:
            if not env_file.exists():
                continue
            for raw_line in env_file.read_text().splitlines():
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                name, val = line.split("=", 1)
                name = name.strip()
                if not name or name in os.environ:
                    continue
                cleaned = val.strip().strip('"').strip("'")
                if cleaned:
                    os.environ[name] = cleaned
        except OSError:
            continue


# Auto-load .env/.env.local for developer convenience.
_prime_dotenv_env()


def default_output_dir(override: Optional[str] = None) -> str:
    """Resolve the output base directory.

    Order: explicit override, then ``SILICONFLOW_OUTPUT_DIR``, then
    ``<system temp>/siliconflow-images``.
    """
    chosen = override or os.getenv(OUTPUT_DIR_ENV)
    if chosen:
        return os.path.abspath(os.path.expanduser(chosen))
    return os.path.join(tempfile.gettempdir(), OUTPUT_SUBDIR)


def _dedupe(dirs: Iterable[str]) -> Tuple[str, ...]:
    seen = []
    for entry in dirs:
        if entry and entry not in seen:
            seen.append(entry)
    return tuple(seen)


def default_allowed_dirs(image_dir: Optional[str] = None) -> Tuple[str, ...]:
    """Build the default set of directories local input images may come from.

    Order: configured image directory (if set), current working directory,
    user home directory, system temp directory.
    """
    dirs = []
    if image_dir:
        dirs.append(os.path.abspath(os.path.expanduser(image_dir)))
    try:
        dirs.append(os.getcwd())
    except OSError:
        # cwd may have been removed underneath us
        pass
    home = os.path.expanduser("~")
    if home and home != "~":
        dirs.append(home)
    dirs.append(tempfile.gettempdir())
    return _dedupe(dirs)


@dataclass(frozen=True)
class ServiceConfig:
    """Settings captured once at startup."""
    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    output_dir: str = field(default_factory=default_output_dir)
    allowed_image_dirs: Tuple[str, ...] = field(default_factory=default_allowed_dirs)
    image_dir: Optional[str] = None
    mock: bool = False

    @classmethod
    def from_env(
        cls,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        output_dir: Optional[str] = None,
        allowed_image_dirs: Optional[Iterable[str]] = None,
        image_dir: Optional[str] = None,
        mock: Optional[bool] = None,
    ) -> "ServiceConfig":
        """Build a config from keyword overrides, falling back to the environment."""
        effective_image_dir = image_dir or os.getenv(IMAGE_DIR_ENV) or None
        if allowed_image_dirs is not None:
            allowed = _dedupe(os.path.abspath(os.path.expanduser(d)) for d in allowed_image_dirs)
        else:
            allowed = default_allowed_dirs(effective_image_dir)

        if mock is None:
            mock = os.getenv(MOCK_ENV, "").strip().lower() == "true"

        return cls(
            api_key=(api_key or os.getenv(API_KEY_ENV) or "").strip() or None,
            base_url=(base_url or os.getenv(API_URL_ENV) or DEFAULT_BASE_URL).rstrip("/"),
            output_dir=default_output_dir(output_dir),
            allowed_image_dirs=allowed,
            image_dir=effective_image_dir,
            mock=mock,
        )
