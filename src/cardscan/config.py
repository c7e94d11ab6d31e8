"""Scan configuration.

Each setting resolves from the ``CARDSCAN_<NAME>`` environment variable,
then the JSON settings file, then the default below.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

log = logging.getLogger(__name__)

ENV_PREFIX = "CARDSCAN_"
SETTINGS_ENV = "CARDSCAN_SETTINGS"
DEFAULT_SETTINGS_PATH = "./cardscan.json"

_TRUE_STRINGS = ("1", "true", "on", "yes")


@dataclass
class ScanConfig:
    """Capture loop and OCR settings.

    Args:
        scan_interval: Seconds between capture cycles.
        stable_matches: Consecutive identical reads needed to confirm a field.
        camera_device: OpenCV device index or video path.
        snapshot_dir: Write captured frames here as JPEG (None keeps them in memory).
        ocr_languages: EasyOCR language codes.
        ocr_gpu: Run EasyOCR on the GPU.
        ocr_enhance: Grayscale + CLAHE before recognition.
        log_level: Logging level name used by the scripts.
    """

    scan_interval: float = 1.8
    stable_matches: int = 2
    camera_device: Union[int, str] = 0
    snapshot_dir: Optional[str] = None
    ocr_languages: List[str] = field(default_factory=lambda: ["en"])
    ocr_gpu: bool = False
    ocr_enhance: bool = True
    log_level: str = "INFO"

    def __post_init__(self):
        if self.scan_interval <= 0:
            raise ValueError(f"scan_interval must be > 0, got {self.scan_interval}")
        if self.stable_matches < 1:
            raise ValueError(f"stable_matches must be >= 1, got {self.stable_matches}")
        self.log_level = str(self.log_level).strip().upper()
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Unknown log_level: {self.log_level!r}")

    @classmethod
    def load(
        cls,
        settings_path: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ScanConfig":
        """Build a config from environment variables and a JSON settings file.

        Args:
            settings_path: JSON file path. Defaults to ``$CARDSCAN_SETTINGS``
                or ``./cardscan.json``; a missing file is ignored.
            environ: Environment mapping (defaults to ``os.environ``).
        """
        env = os.environ if environ is None else environ
        path = Path(settings_path or env.get(SETTINGS_ENV, DEFAULT_SETTINGS_PATH))
        settings = _read_settings(path)

        values = {}
        for f in fields(cls):
            env_name = ENV_PREFIX + f.name.upper()
            if env_name in env:
                values[f.name] = _cast(f.name, env[env_name])
            elif f.name in settings:
                values[f.name] = _cast(f.name, settings[f.name])
        return cls(**values)


def _read_settings(path: Path) -> dict:
    if not path.is_file():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: settings must be a JSON object")
    log.debug("Loaded settings from %s", path)
    return data


def _cast(name: str, value: Any) -> Any:
    """Cast a raw env/JSON value to the type of the named field."""
    if name == "scan_interval":
        return float(value)
    if name == "stable_matches":
        return int(value)
    if name in ("ocr_gpu", "ocr_enhance"):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUE_STRINGS
    if name == "ocr_languages":
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value]
        text = str(value).strip()
        if text.startswith("["):
            return [str(v) for v in json.loads(text)]
        return [part.strip() for part in text.split(",") if part.strip()]
    if name == "camera_device":
        # Numeric strings are device indices, anything else a path/URL
        if isinstance(value, int) or str(value).isdigit():
            return int(value)
        return str(value)
    if name == "snapshot_dir":
        return str(value) if value else None
    return str(value)
