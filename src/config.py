from __future__ import annotations

from functools import cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ARTIFACTS_DIR = PROJECT_ROOT / "artifacts"
DB_FILE = ARTIFACTS_DIR / "coin_ledger.db"


class AppSettings(BaseSettings):
    rpc_user: str
    rpc_password: str
    rpc_host: str = "127.0.0.1"
    rpc_port: int = 8332
    rpc_ssl: bool = False
    rpc_timeout: float = 30.0

    wallet_currency: str = "BTC"
    wallet_confirmations: int = 6

    db_file: Path = DB_FILE

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@cache
def config() -> AppSettings:
    return AppSettings()  # type: ignore[call-arg]
