"""Runtime settings read from the environment.

A .env file in the working directory (or the path in COLDCHAIN_ENV_FILE)
is loaded first; variables already set in the environment win.

Design constants of the network itself (scale, node ids, compliance
threshold) are not configurable and live in coldchain.models.network.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from coldchain.crypto.anchor import SEPOLIA_CHAIN_ID


DEFAULT_DATA_DIR = Path("data")
DEFAULT_ADMIN = "admin"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    data_dir: Path = DEFAULT_DATA_DIR
    admin: str = DEFAULT_ADMIN
    log_level: str = "INFO"
    log_json: bool = False
    rpc_url: Optional[str] = None
    private_key: Optional[str] = None
    chain_id: int = SEPOLIA_CHAIN_ID

    @property
    def event_log_path(self) -> Path:
        return self.data_dir / "events.jsonl"

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> Settings:
        """Build settings from env (defaults to os.environ after .env load)."""
        if env is None:
            load_dotenv(os.environ.get("COLDCHAIN_ENV_FILE", ".env"))
            env = os.environ
        return Settings(
            data_dir=Path(env.get("COLDCHAIN_DATA_DIR", str(DEFAULT_DATA_DIR))),
            admin=env.get("COLDCHAIN_ADMIN", DEFAULT_ADMIN).strip() or DEFAULT_ADMIN,
            log_level=env.get("COLDCHAIN_LOG_LEVEL", "INFO").upper(),
            log_json=env.get("COLDCHAIN_LOG_JSON", "").strip().lower() in _TRUE_VALUES,
            rpc_url=env.get("COLDCHAIN_RPC_URL") or None,
            private_key=env.get("COLDCHAIN_PRIVATE_KEY") or None,
            chain_id=int(env.get("COLDCHAIN_CHAIN_ID", str(SEPOLIA_CHAIN_ID))),
        )
