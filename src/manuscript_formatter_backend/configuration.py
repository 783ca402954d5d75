from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

# Load environment variables from .env file before any interpolation is resolved
load_dotenv()

_HERE = Path(__file__).resolve()
PACKAGED_CONFIG_PATH = _HERE.parent / "config/config.yaml"
CONFIG_ENV_VAR = "MANUSCRIPT_CONFIG"


def _config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR)
    path = Path(override) if override else PACKAGED_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config not found at {path}")
    return path


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


@dataclass(frozen=True)
class Settings:
    """Typed, resolved snapshot of the service configuration."""

    base_public_url: str
    storage_backend: str
    files_dir: Path
    output_subdir: str
    s3_bucket: str
    s3_prefix: str
    presign_expiration: int
    max_workers: int
    db_path: Path
    keep_completed: int
    keep_failed: int
    max_wait_seconds: float
    max_waiters: int
    template_timeout: float
    template_max_bytes: int
    pdf_no_sandbox: bool
    pdf_launch_timeout_ms: int
    pdf_load_timeout_ms: int
    pdf_render_timeout_ms: int
    max_upload_mb: int
    log_level: str

    @property
    def output_dir(self) -> Path:
        return self.files_dir / self.output_subdir

    @classmethod
    def from_config(cls, config: DictConfig) -> "Settings":
        resolved: Dict[str, Any] = OmegaConf.to_container(config, resolve=True)  # type: ignore[assignment]
        server = resolved["server"]
        storage = resolved["storage"]
        jobs = resolved["jobs"]
        template = resolved["template"]
        pdf = resolved["pdf"]

        return cls(
            base_public_url=str(server["base_public_url"]).rstrip("/"),
            storage_backend=str(storage["backend"]).lower(),
            files_dir=Path(storage["files_dir"]),
            output_subdir=str(storage["output_subdir"]),
            s3_bucket=str(storage["s3_bucket"] or ""),
            s3_prefix=str(storage["s3_prefix"] or ""),
            presign_expiration=int(storage["presign_expiration"]),
            max_workers=max(1, int(jobs["max_workers"])),
            db_path=Path(jobs["db_path"]),
            keep_completed=int(jobs["keep_completed"]),
            keep_failed=int(jobs["keep_failed"]),
            max_wait_seconds=float(jobs["max_wait_seconds"]),
            max_waiters=max(1, int(jobs["max_waiters"])),
            template_timeout=float(template["timeout"]),
            template_max_bytes=int(template["max_bytes"]),
            pdf_no_sandbox=_as_bool(pdf["no_sandbox"]),
            pdf_launch_timeout_ms=int(pdf["launch_timeout_ms"]),
            pdf_load_timeout_ms=int(pdf["load_timeout_ms"]),
            pdf_render_timeout_ms=int(pdf["render_timeout_ms"]),
            max_upload_mb=int(resolved["uploads"]["max_upload_mb"]),
            log_level=str(resolved["logging"]["level"]).upper(),
        )


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    return OmegaConf.load(_config_path())


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve, enum_to_str=True)  # type: ignore[return-value]


def make_runtime_config(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """Merge overrides onto the default config; unknown keys are rejected."""
    base_container = OmegaConf.to_container(_load_default_config(), resolve=False)
    base = OmegaConf.create(base_container)
    OmegaConf.set_struct(base, True)

    cli_config = OmegaConf.create(overrides or {})
    merged = DictConfig(OmegaConf.merge(base, cli_config))
    return merged


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> Settings:
    return Settings.from_config(make_runtime_config(overrides))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
