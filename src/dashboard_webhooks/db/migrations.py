"""Apply the bundled SQL migrations at startup."""
from __future__ import annotations

import hashlib
from pathlib import Path

import asyncpg  # type: ignore[import-untyped]
import structlog

logger = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


def load_migrations(migrations_dir: Path = MIGRATIONS_DIR) -> dict[str, str]:
    """Return ``{version: sql}`` ordered by file name."""
    migrations: dict[str, str] = {}
    for path in sorted(migrations_dir.glob("*.sql")):
        migrations[path.stem] = path.read_text(encoding="utf-8")
    return migrations


async def ensure_schema_table(conn: asyncpg.Connection) -> None:
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version text PRIMARY KEY,
            checksum text NOT NULL,
            applied_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )


async def apply_migrations(pool: asyncpg.Pool, migrations_dir: Path = MIGRATIONS_DIR) -> int:
    """Apply pending migrations, each in its own transaction. Returns how many ran."""
    migrations = load_migrations(migrations_dir)
    if not migrations:
        logger.warning("no migrations found", path=str(migrations_dir))
        return 0

    applied_count = 0
    async with pool.acquire() as conn:
        await ensure_schema_table(conn)
        rows = await conn.fetch("SELECT version, checksum FROM schema_migrations")
        applied = {row["version"]: row["checksum"] for row in rows}

        for version, sql in migrations.items():
            checksum = hashlib.sha256(sql.encode("utf-8")).hexdigest()
            if version in applied:
                if applied[version] != checksum:
                    raise RuntimeError(
                        f"Checksum mismatch for {version}: "
                        f"{applied[version]} (db) != {checksum} (file)"
                    )
                continue
            async with conn.transaction():
                await conn.execute(sql)
                await conn.execute(
                    "INSERT INTO schema_migrations (version, checksum) VALUES ($1, $2)",
                    version,
                    checksum,
                )
            applied_count += 1
            logger.info("migration applied", version=version)

    return applied_count
