"""
config.py - Connection settings with environment defaults.

Environment:
    IDBTABLES_DATABASE   database name (default "idbtables")
    IDBTABLES_VERSION    schema version (default 1)
    IDBTABLES_LOG_LEVEL  default log sink threshold, see ui_log
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .connection import Database, SchemaCallback, connect

DATABASE_ENV = "IDBTABLES_DATABASE"
VERSION_ENV = "IDBTABLES_VERSION"
DEFAULT_DATABASE = "idbtables"


@dataclass
class DatabaseConfig:
    name: str = DEFAULT_DATABASE
    version: int = 1
    schema: Optional[SchemaCallback] = None
    on_blocked: Optional[Callable[[Any], None]] = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Database name must be non-empty")
        if isinstance(self.version, bool) or not isinstance(self.version, int) or self.version < 1:
            raise ValueError(f"Database version must be a positive int, got {self.version!r}")

    @classmethod
    def from_env(
        cls, schema: Optional[SchemaCallback] = None, environ: Optional[dict] = None
    ) -> "DatabaseConfig":
        env = os.environ if environ is None else environ
        raw = env.get(VERSION_ENV, "1").strip()
        try:
            version = int(raw)
        except ValueError:
            raise ValueError(f"{VERSION_ENV} must be an integer, got {raw!r}") from None
        return cls(
            name=env.get(DATABASE_ENV, DEFAULT_DATABASE).strip() or DEFAULT_DATABASE,
            version=version,
            schema=schema,
        )

    async def connect(self, factory: Any = None) -> Database:
        return await connect(
            self.name,
            self.version,
            self.schema,
            factory=factory,
            on_blocked=self.on_blocked,
        )
