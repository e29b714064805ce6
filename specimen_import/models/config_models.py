from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses.

Kept separate from the loader in specimen_import/config/loader.py so that the
importers and services can depend on the typed config without pulling in YAML
or jsonschema.
"""

__all__ = [
    "DatabaseConfig",
    "ImporterOverride",
    "ImportConfig",
]


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImporterOverride:
    """Per-importer layout override (sheets exported with extra / moved columns)."""
    starting_row: int | None = None
    column_map: dict[str, str] | None = None


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for the import CLI."""
    staging_directory: str = "./staging"  # ステージング JSON 保存先
    logs_directory: str = "./logs"
    retention_days: int = 7  # 未コミット workbook の保持日数
    timezone: str = "UTC"  # naive datetime セルの解釈タイムゾーン
    importers: dict[str, ImporterOverride] = field(default_factory=dict)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    def override_for(self, importer: str) -> ImporterOverride:
        return self.importers.get(importer, ImporterOverride())
