"""
Runtime configuration for the file install job.

Every directory, endpoint and store setting lives on one frozen
``JobConfig`` built once at startup (usually via ``JobConfig.from_env``)
and handed to each component at construction.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Mapping

from pydantic import BaseModel, ConfigDict, field_validator

DEFAULT_MODS_DIR = "/valheim/BepInEx/plugins/"
DEFAULT_CONFIG_DIR = "/valheim/BepInEx/config/"
DEFAULT_WORLDS_DIR = "/root/.config/unity3d/IronGate/Valheim/worlds_local/"
DEFAULT_BUCKET = "hearthhub-backups"
DEFAULT_API_BASE_URL = "http://hearthhub-mod-api.hearthhub.svc.cluster.local:8080"
DEFAULT_PROFILE_DB = "/valheim/hearthhub.db"

# Valheim names its automatic world backups <world>_backup_auto-<timestamp>.db
BACKUP_INFIX = "_backup_auto-"

ProfileStoreKind = Literal["sqlite", "cognito"]


class JobConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    mods_dir: Path = Path(DEFAULT_MODS_DIR)
    config_dir: Path = Path(DEFAULT_CONFIG_DIR)
    worlds_dir: Path = Path(DEFAULT_WORLDS_DIR)

    bucket_name: str = DEFAULT_BUCKET
    api_base_url: str = DEFAULT_API_BASE_URL

    user_pool_id: str = ""
    cognito_client_id: str = ""
    cognito_client_secret: str = ""

    profile_store: ProfileStoreKind = "sqlite"
    profile_db_path: Path = Path(DEFAULT_PROFILE_DB)

    scale_down_grace_seconds: float = 15.0
    backup_infix: str = BACKUP_INFIX

    @field_validator("api_base_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("scale_down_grace_seconds")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("scale_down_grace_seconds must be >= 0")
        return v

    @property
    def mounted_dirs(self) -> tuple[Path, Path, Path]:
        return (self.mods_dir, self.config_dir, self.worlds_dir)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> JobConfig:
        """Build a config from environment variables, keeping defaults for
        anything unset or empty."""
        env = os.environ if environ is None else environ
        mapping = {
            "mods_dir": "MODS_DIR",
            "config_dir": "CONFIG_DIR",
            "worlds_dir": "WORLDS_DIR",
            "bucket_name": "BUCKET_NAME",
            "api_base_url": "API_BASE_URL",
            "user_pool_id": "USER_POOL_ID",
            "cognito_client_id": "COGNITO_CLIENT_ID",
            "cognito_client_secret": "COGNITO_CLIENT_SECRET",
            "profile_store": "PROFILE_STORE",
            "profile_db_path": "PROFILE_DB_PATH",
            "scale_down_grace_seconds": "SCALE_DOWN_GRACE_SECONDS",
        }
        values = {field: env[var] for field, var in mapping.items() if env.get(var)}
        return cls.model_validate(values)
