import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        data_dir: Path,
        database_url: str,
        storage: str,
        snapshot_key: str,
        confirm_secret: str,
        dedupe_alerts: bool,
        default_split: tuple[int, int, int],
    ) -> None:
        self.data_dir = data_dir
        self.database_url = database_url
        self.storage = storage
        self.snapshot_key = snapshot_key
        self.confirm_secret = confirm_secret
        self.dedupe_alerts = dedupe_alerts
        self.default_split = default_split


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _parse_split(raw: str) -> tuple[int, int, int]:
    parts = [p.strip() for p in raw.split("/")]
    if len(parts) != 3:
        raise ValueError(f"BUDGET_DEFAULT_SPLIT must look like 40/30/30, got {raw!r}")
    needs, wants, investments = (int(p) for p in parts)
    return needs, wants, investments


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    storage = os.getenv("BUDGET_STORAGE", "sql").lower()
    snapshot_key = os.getenv("BUDGET_SNAPSHOT_KEY", "financial_dashboard_data")
    confirm_secret = os.getenv(
        "BUDGET_CONFIRM_SECRET",
        "5d0c7f2b8e61a4c93f07d2b1e8a65c40b9f13e7a2d84c6f05b1a9e3d7c2f8064",
    )
    dedupe_alerts = os.getenv("BUDGET_DEDUPE_ALERTS", "0").lower() in {
        "1",
        "true",
        "yes",
        "on",
    }
    default_split = _parse_split(os.getenv("BUDGET_DEFAULT_SPLIT", "40/30/30"))
    return Settings(
        data_dir=data_dir,
        database_url=database_url,
        storage=storage,
        snapshot_key=snapshot_key,
        confirm_secret=confirm_secret,
        dedupe_alerts=dedupe_alerts,
        default_split=default_split,
    )
