from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

from .models import UploadLimits

load_dotenv()

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [parent / "config/config.yaml" for parent in _HERE.parents[:4]]

DEFAULTS: Dict[str, Any] = {
    "storage": {
        "upload_root": "uploads",
        "web_prefix": "/uploads",
        "editions_dirname": "editions",
    },
    "upload": {
        "max_bytes": 50 * 1024 * 1024,
        "allowed_content_types": ["application/pdf"],
    },
    "raster": {
        "backend": "imagemagick",
        "magick_binary": "convert",
        "pdftoppm_binary": "pdftoppm",
        "density": 250,
        "quality": 85,
        "timeout_seconds": 300,
    },
    "thumbnails": {
        "og_width": 1200,
        "og_height": 600,
        "list_height": 1200,
        "quality": 85,
        "timeout_seconds": 120,
    },
    "database": {
        "path": "data/editions.db",
    },
    "logging": {
        "level": "INFO",
    },
}

# Environment variable -> dotted config key
ENV_OVERRIDES = {
    "UPLOAD_DIR": "storage.upload_root",
    "DATABASE_PATH": "database.path",
    "RASTER_BACKEND": "raster.backend",
    "MAGICK_BINARY": "raster.magick_binary",
    "PDFTOPPM_BINARY": "raster.pdftoppm_binary",
    "LOG_LEVEL": "logging.level",
}


def _config_file() -> Optional[Path]:
    explicit = os.environ.get("EPAPER_CONFIG")
    if explicit:
        path = Path(explicit)
        if not path.exists():
            raise FileNotFoundError(f"EPAPER_CONFIG points to a missing file: {path}")
        return path
    return next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    base = OmegaConf.create(DEFAULTS)
    config_path = _config_file()
    if config_path is not None:
        base = OmegaConf.merge(base, OmegaConf.load(config_path))
    return base


def _env_dotlist() -> List[str]:
    return [f"{key}={os.environ[name]}" for name, key in ENV_OVERRIDES.items() if os.environ.get(name)]


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Build the runtime settings.

    Precedence, lowest first: built-in defaults, the YAML config file,
    environment variables, then ``overrides``. Struct mode is enabled so a
    misspelled key fails instead of being silently ignored.
    """
    base_container = OmegaConf.to_container(_load_default_config(), resolve=False)
    base = OmegaConf.create(base_container)
    OmegaConf.set_struct(base, True)

    merged = OmegaConf.merge(base, OmegaConf.from_dotlist(_env_dotlist()))
    if overrides:
        merged = OmegaConf.merge(merged, OmegaConf.create(overrides))
    return DictConfig(merged)


def build_upload_limits(settings: DictConfig) -> UploadLimits:
    return UploadLimits(
        max_upload_bytes=int(settings.upload.max_bytes),
        allowed_content_types=list(settings.upload.allowed_content_types),
        raster_density=int(settings.raster.density),
        raster_quality=int(settings.raster.quality),
        og_thumb_width=int(settings.thumbnails.og_width),
        og_thumb_height=int(settings.thumbnails.og_height),
        list_thumb_height=int(settings.thumbnails.list_height),
    )
