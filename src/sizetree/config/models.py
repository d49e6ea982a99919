"""Settings and request schema for sizetree."""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, Field, field_validator

ScanStrategy = Literal["auto", "portable", "fast"]


class ScanRequest(BaseModel):
    root_path: str
    max_depth: int = Field(default=10, ge=1)
    min_size_bytes: int = Field(default=0, ge=0, description="Fast-path filter only")

    @field_validator("root_path")
    @classmethod
    def normalize_root(cls, value: str) -> str:
        if not value:
            raise ValueError("root_path must not be empty")
        return os.path.abspath(os.path.expanduser(value))


class FastPathSettings(BaseModel):
    find_program: str | None = Field(default=None, description="Override for the enumeration tool")
    du_program: str | None = Field(default=None, description="Override for the size-totals tool")
    queue_size: int = Field(default=1024, ge=1)


class ScanSettings(BaseModel):
    max_depth: int = Field(default=10, ge=1)
    min_size_bytes: int = Field(default=0, ge=0)
    concurrency: int = Field(default=50, ge=1, le=4096)
    ignore_file: str = Field(default=".gitignore")
    extra_ignore_patterns: list[str] = Field(default_factory=list)
    strategy: ScanStrategy = Field(default="auto")
    progress_interval: int = Field(default=1000, ge=1)
    fast_path: FastPathSettings = Field(default_factory=FastPathSettings)

    def request_for(
        self,
        root_path: str,
        *,
        max_depth: int | None = None,
        min_size_bytes: int | None = None,
    ) -> ScanRequest:
        return ScanRequest(
            root_path=root_path,
            max_depth=self.max_depth if max_depth is None else max_depth,
            min_size_bytes=self.min_size_bytes if min_size_bytes is None else min_size_bytes,
        )


class AppSettings(BaseModel):
    schema_version: int = Field(default=1)
    scan: ScanSettings = Field(default_factory=ScanSettings)

    def setting_items(self) -> list[tuple[str, str]]:
        """Flatten key/value pairs for display."""

        result: list[tuple[str, str]] = []

        def walk(prefix: str, value: object) -> None:
            if isinstance(value, dict):
                for key, nested in value.items():
                    walk(f"{prefix}.{key}" if prefix else key, nested)
            else:
                result.append((prefix, str(value)))

        walk("", self.model_dump())
        return result
