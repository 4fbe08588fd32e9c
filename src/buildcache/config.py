"""Configuration loader for the build cache action."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .reclaim import AGENT_URL

DEFAULT_M2_PATH = "~/.m2"


@dataclass(frozen=True)
class CacheConfig:
    key_prefix: str
    key_paths: List[str]
    depth: int
    m2_path: str
    cache_paths: List[str]
    upload_chunk_size: Optional[int]
    cross_os_archive: bool
    wrapper: bool
    wrapper_paths: List[str]
    backend_dir: str
    agent_url: str
    ref: Optional[str]
    workspace: Path
    output_path: Optional[Path]

    @property
    def restore_key_path(self) -> Path:
        return Path(os.path.expanduser(self.m2_path)) / "cache-restore-key-success"

    @property
    def wrapper_key_path(self) -> Path:
        return Path(os.path.expanduser(self.m2_path)) / "cache-restore-wrapper-key"

    @property
    def wrapper_cache_path(self) -> str:
        return str(Path(os.path.expanduser(self.m2_path)) / "wrapper")

    @property
    def state_path(self) -> Path:
        return Path(os.path.expanduser(self.m2_path)) / "cache-phase-state.json"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheConfig":
        m2_path = data.get("m2_path", DEFAULT_M2_PATH)
        chunk_size = data.get("upload_chunk_size")
        output_path = data.get("output_path")
        return cls(
            key_prefix=data.get("key_prefix", "maven-cache"),
            key_paths=list(data.get("key_paths", ["**/pom.xml"])),
            depth=int(data.get("depth") or 100),
            m2_path=m2_path,
            cache_paths=list(data.get("cache_paths", [f"{m2_path}/repository"])),
            upload_chunk_size=_chunk_size(chunk_size),
            cross_os_archive=bool(data.get("cross_os_archive", False)),
            wrapper=bool(data.get("wrapper", True)),
            wrapper_paths=list(data.get("wrapper_paths", [".mvn/wrapper/maven-wrapper.properties"])),
            backend_dir=data.get("backend_dir", "~/.cache/buildcache"),
            agent_url=data.get("agent_url", AGENT_URL),
            ref=data.get("ref") or None,
            workspace=Path(data.get("workspace") or os.getcwd()),
            output_path=Path(output_path) if output_path else None,
        )


def _chunk_size(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    value = int(value)
    return value if value >= 0 else None


ENV_MAP = {
    "key_prefix": "CACHE_KEY_PREFIX",
    "key_paths": "CACHE_KEY_PATHS",
    "depth": "CACHE_DEPTH",
    "m2_path": "MAVEN_HOME_DIR",
    "cache_paths": "CACHE_PATHS",
    "upload_chunk_size": "CACHE_UPLOAD_CHUNK_SIZE",
    "cross_os_archive": "CACHE_CROSS_OS_ARCHIVE",
    "wrapper": "CACHE_WRAPPER",
    "backend_dir": "CACHE_BACKEND_DIR",
    "agent_url": "CACHE_AGENT_URL",
    "ref": "GITHUB_REF",
    "workspace": "GITHUB_WORKSPACE",
    "output_path": "GITHUB_OUTPUT",
}

INT_KEYS = {"depth", "upload_chunk_size"}
BOOL_KEYS = {"cross_os_archive", "wrapper"}
LIST_KEYS = {"key_paths", "cache_paths"}


def _as_list(value: str) -> List[str]:
    return [item.strip() for item in value.split("\n") if item.strip()]


def load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def merge_env_overrides(config_data: Dict[str, Any]) -> Dict[str, Any]:
    merged = json.loads(json.dumps(config_data))  # deep copy via json

    for key, env_name in ENV_MAP.items():
        if env_name not in os.environ:
            continue
        value: Any = os.environ[env_name]
        if key in INT_KEYS:
            value = int(value) if value.strip() else None
        elif key in BOOL_KEYS:
            value = value.strip().lower() == "true"
        elif key in LIST_KEYS:
            value = _as_list(value)
        merged[key] = value

    return merged


def load_config(config_path: str | Path | None = None) -> CacheConfig:
    data: Dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        data = load_yaml(path)

    data = merge_env_overrides(data)
    return CacheConfig.from_dict(data)
