import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture(autouse=True)
def disable_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("time.sleep", lambda *_args, **_kwargs: None)


@pytest.fixture(autouse=True)
def isolated_engine_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "RPG_DATABASE_URL",
        "RPG_RNG_SEED",
        "RPG_STALE_RETRY_LIMIT",
        "RPG_DEFEAT_PENALTY",
        "RPG_EXPLORATION_SECONDS_PER_PERCENT",
        "RPG_AUTO_MIGRATE",
        "RPG_DB_CONNECT_PROBE_TIMEOUT_S",
        "RPG_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
