"""
Editor Settings - User-level configuration for the workflow editor.

Settings are stored as JSON in ~/.config/workflow_studio/settings.json.
Missing keys fall back to defaults so older files keep loading.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any


logger = logging.getLogger(__name__)

SETTINGS_PATH = Path.home() / ".config" / "workflow_studio" / "settings.json"


@dataclass
class EditorSettings:
    """
    Editor-wide settings.

    Attributes:
        save_delay: Seconds of inactivity before an auto-save fires
        thumbnail_interval: Minimum seconds between two thumbnail captures
        max_history: Number of undo snapshots kept
        backend: "local" for the workspace directory, "http" for the server
        server_url: Base URL of the workflow server
        workspace_dir: Directory used by the local backend
        log_level: Logging level name for the CLI
    """
    # Auto-save
    save_delay: float = 1.0
    thumbnail_interval: float = 60.0

    # History
    max_history: int = 50

    # Storage
    backend: str = "local"
    server_url: str = "http://localhost:3000"
    workspace_dir: Path | None = None

    log_level: str = "INFO"

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary for serialization."""
        return {
            "save_delay": self.save_delay,
            "thumbnail_interval": self.thumbnail_interval,
            "max_history": self.max_history,
            "backend": self.backend,
            "server_url": self.server_url,
            "workspace_dir": str(self.workspace_dir) if self.workspace_dir else None,
            "log_level": self.log_level,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EditorSettings:
        """Create settings from dictionary."""
        return cls(
            save_delay=float(data.get("save_delay", 1.0)),
            thumbnail_interval=float(data.get("thumbnail_interval", 60.0)),
            max_history=int(data.get("max_history", 50)),
            backend=data.get("backend", "local"),
            server_url=data.get("server_url", "http://localhost:3000"),
            workspace_dir=Path(data["workspace_dir"]) if data.get("workspace_dir") else None,
            log_level=data.get("log_level", "INFO"),
        )


def load_settings(path: Path | None = None) -> EditorSettings:
    """Load settings from file; defaults when the file is missing or unreadable."""
    if path is None:
        path = SETTINGS_PATH

    if not path.exists():
        return EditorSettings()

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to load settings from {path}: {e}")
        return EditorSettings()

    if not isinstance(data, dict):
        logger.warning(f"Ignoring malformed settings file {path}")
        return EditorSettings()
    return EditorSettings.from_dict(data)


def save_settings(settings: EditorSettings, path: Path | None = None) -> Path:
    """Save settings to file and return the path written."""
    if path is None:
        path = SETTINGS_PATH

    # Ensure directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(settings.to_dict(), f, indent=2)
    return path
