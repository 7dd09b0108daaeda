import os
import subprocess
from pathlib import Path
from urllib.parse import urlparse

import pytest
from testcontainers.postgres import PostgresContainer

PROJECT_ROOT = Path(__file__).parents[2]
HEAD_REVISION = "3f9b2c71d0a4"


def _alembic(env: dict, *args: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["alembic", *args], cwd=PROJECT_ROOT, env=env, capture_output=True, text=True
    )


def _billing_env(connection_url: str) -> dict:
    parsed = urlparse(connection_url)
    env = os.environ.copy()
    env.update(
        DB_USER=parsed.username,
        DB_PASSWORD=parsed.password,
        DB_HOST=parsed.hostname,
        DB_PORT=str(parsed.port),
        DB_NAME=parsed.path.lstrip("/"),
        LOCK_PROVIDER="memory",
    )
    return env


@pytest.mark.docker
def test_billing_schema_upgrades_and_downgrades():
    with PostgresContainer("postgres:16", driver=None) as postgres:
        env = _billing_env(postgres.get_connection_url())

        upgrade = _alembic(env, "upgrade", "head")
        assert upgrade.returncode == 0, f"Upgrade failed: {upgrade.stderr}"

        current = _alembic(env, "current")
        assert HEAD_REVISION in current.stdout

        downgrade = _alembic(env, "downgrade", "base")
        assert downgrade.returncode == 0, f"Downgrade failed: {downgrade.stderr}"

        # Upgrading again proves the downgrade dropped every table and index
        reupgrade = _alembic(env, "upgrade", "head")
        assert reupgrade.returncode == 0, f"Re-upgrade failed: {reupgrade.stderr}"
