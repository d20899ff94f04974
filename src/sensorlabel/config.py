"""Load, save, and validate the JSON config at ~/.config/sensorlabel/config.json."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "sensorlabel"
CONFIG_PATH = CONFIG_DIR / "config.json"
SESSION_PATH = CONFIG_DIR / "session.json"

DEFAULTS: dict[str, dict[str, Any]] = {
    "data_folder": {
        "value": "~/sensor_data",
        "description": "Folder holding synced raw sensor files and their .segments.json sidecars.",
    },
    "device_folder": {
        "value": "~/sensor_device",
        "description": "Folder the wearable exposes its recordings in. Files here but not in data_folder are pending.",
    },
    "raw_extension": {
        "value": ".csv",
        "description": "Extension of raw sensor data files. Stripped when naming sidecar files.",
    },
    "default_activities": {
        "value": ["Sitting", "Standing", "Walking", "Running", "Stairs"],
        "description": "Activity labels offered when no custom list is given.",
    },
    "transfer_timeout_seconds": {
        "value": None,
        "description": "Seconds before an in-flight transfer is shown as pending again. null = never.",
    },
    "auto_clipboard": {
        "value": False,
        "description": "Copy exported label CSV to the clipboard after export.",
    },
}


def _ensure_dir() -> None:
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)


def load_config() -> dict[str, Any]:
    """Return a flat dict of {key: value} from the config file, merged with defaults."""
    values: dict[str, Any] = {k: v["value"] for k, v in DEFAULTS.items()}

    if CONFIG_PATH.exists():
        try:
            raw = json.loads(CONFIG_PATH.read_text(encoding="utf-8"))
            for key, entry in raw.items():
                if key.startswith("_"):
                    continue
                if isinstance(entry, dict) and "value" in entry:
                    values[key] = entry["value"]
                else:
                    values[key] = entry
        except (json.JSONDecodeError, OSError, AttributeError) as exc:
            logger.warning("Could not read config at %s: %s", CONFIG_PATH, exc)

    return values


def save_config(values: dict[str, Any]) -> None:
    """Write current values back to the config file, preserving descriptions."""
    _ensure_dir()
    data: dict[str, Any] = {
        "_description": "sensorlabel configuration. Edit values below; descriptions are for reference."
    }
    for key, meta in DEFAULTS.items():
        data[key] = {
            "value": values.get(key, meta["value"]),
            "description": meta["description"],
        }
    CONFIG_PATH.write_text(
        json.dumps(data, indent=4, ensure_ascii=False) + "\n",
        encoding="utf-8",
    )
    logger.info("Config saved to %s", CONFIG_PATH)


def init_config_if_missing() -> bool:
    """Create default config file if it doesn't exist. Return True if created."""
    if CONFIG_PATH.exists():
        return False
    defaults = {k: v["value"] for k, v in DEFAULTS.items()}
    save_config(defaults)
    return True
