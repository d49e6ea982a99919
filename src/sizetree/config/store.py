"""Persist ``AppSettings`` as one JSON file."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from sizetree.config.models import AppSettings
from sizetree.paths import settings_path
from sizetree.runtime_logging import get_runtime_logger


def parse_setting_value(text: str) -> Any:
    """Read a command-line value as JSON, falling back to the plain string.

    ``"8"`` becomes ``8``, ``'["dist/"]'`` a list and ``portable`` stays text.
    """

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class SettingsStore:
    def __init__(self, path: Path | None = None) -> None:
        self.path = path or settings_path()
        self.logger = get_runtime_logger()

    def load(self) -> AppSettings:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return self._write_defaults()

        try:
            # Malformed JSON surfaces as a ValidationError too.
            return AppSettings.model_validate_json(raw)
        except ValidationError as exc:
            backup = self.path.with_suffix(".corrupt.json")
            backup.write_text(raw, encoding="utf-8")
            self.logger.warning(
                "settings.corrupt",
                path=str(self.path),
                backup=str(backup),
                errors=exc.error_count(),
            )
            return self._write_defaults()

    def save(self, settings: AppSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(settings.model_dump(mode="json"), indent=2, sort_keys=True)
        staging = self.path.with_suffix(".tmp")
        staging.write_text(f"{payload}\n", encoding="utf-8")
        os.replace(staging, self.path)

    def update(self, dotted_key: str, value: Any) -> AppSettings:
        """Set one dotted setting (``scan.max_depth``) and save the validated result."""

        data = self.load().model_dump()
        *parents, leaf = dotted_key.split(".")
        section = data
        for key in parents:
            section = section.get(key)
            if not isinstance(section, dict):
                raise KeyError(f"Unknown setting path: {dotted_key}")
        if leaf not in section or isinstance(section[leaf], dict):
            raise KeyError(f"Unknown setting path: {dotted_key}")
        section[leaf] = value

        updated = AppSettings.model_validate(data)
        self.save(updated)
        self.logger.info("settings.updated", key=dotted_key, path=str(self.path))
        return updated

    def _write_defaults(self) -> AppSettings:
        settings = AppSettings()
        self.save(settings)
        return settings
