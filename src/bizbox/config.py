from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional


@dataclass
class OpenAIConfig:
    """Configuration describing how the engine calls the generative text service."""

    model: str = "gpt-4.1-mini"
    temperature: float = 0.7
    max_output_tokens: int = 2600
    enabled: bool = True
    api_key_env: str = "OPENAI_API_KEY"
    base_url: Optional[str] = None
    timeout: float = 120.0


@dataclass
class EngineConfig:
    """Scheduling knobs for the execution engine."""

    max_parallel_items: int = 1
    shared_concurrency: int = 4
    brief_max_tokens: int = 500


@dataclass
class ServicesConfig:
    """Endpoints for the external asset-generation and site-deploy services."""

    image_api_url: str = "https://app.dumplingai.com/api/v1/generate-ai-image"
    image_api_key_env: str = "BIZBOX_IMAGE_API_KEY"
    image_model: str = "FLUX.1-schnell"
    logo_variations: int = 5
    deploy_api_url: str = "https://api.v0.dev/v1"
    deploy_api_key_env: str = "BIZBOX_DEPLOY_API_KEY"
    deploy_max_polls: int = 20
    deploy_poll_interval: float = 3.0
    http_timeout: float = 60.0
    side_effect_max_attempts: int = 1


@dataclass
class DeliveryConfig:
    """Content store and signed-link settings for delivery packages."""

    link_ttl_seconds: int = 7 * 24 * 60 * 60
    signing_key_env: str = "BIZBOX_SIGNING_KEY"
    public_base_url: str = "http://localhost:8000/downloads"
    product_name: str = "Business in a Box"
    support_email: str = "support@example.com"


@dataclass
class PathsConfig:
    """Filesystem layout for runs and packages."""

    root: Path
    data_dir: Path
    content_dir: Path
    db_path: Path


@dataclass
class AppConfig:
    """Top level configuration consumed throughout the engine."""

    environment: str = "local"
    dry_run: bool = False
    catalog_path: Optional[Path] = None
    progress_poll_interval: float = 2.0
    paths: PathsConfig = field(default_factory=lambda: build_paths(Path.cwd()))
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    services: ServicesConfig = field(default_factory=ServicesConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.paths.db_path}"

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON serialisable copy of the config for persistence."""
        payload = asdict(self)
        payload["catalog_path"] = str(self.catalog_path) if self.catalog_path else None
        payload["paths"] = {
            "root": str(self.paths.root),
            "data_dir": str(self.paths.data_dir),
            "content_dir": str(self.paths.content_dir),
            "db_path": str(self.paths.db_path),
        }
        return payload


def build_paths(root: Path) -> PathsConfig:
    """Construct the default filesystem layout under *root*."""
    data_dir = root / "var"
    content_dir = data_dir / "content"
    db_path = data_dir / "bizbox.sqlite"
    return PathsConfig(root=root, data_dir=data_dir, content_dir=content_dir, db_path=db_path)


def load_config(path: Optional[Path], dry_run: bool = False) -> AppConfig:
    """
    Load configuration from *path* if provided, otherwise use repository defaults.

    The configuration file is expected to be JSON. Unspecified fields fall back
    to the defaults baked into the dataclasses above.
    """
    config = AppConfig()
    config.paths = build_paths(Path.cwd())
    config.dry_run = dry_run

    if path is None:
        return config

    with Path(path).expanduser().open("r", encoding="utf-8") as handle:
        data = json.load(handle)

    _apply_config_updates(config, data)
    config.dry_run = dry_run or data.get("dry_run", config.dry_run)
    return config


def _apply_config_updates(config: AppConfig, payload: Dict[str, Any]) -> None:
    """Update *config* in-place using keys from the *payload* dict."""
    if "environment" in payload:
        config.environment = payload["environment"]
    if "catalog_path" in payload and payload["catalog_path"]:
        config.catalog_path = Path(payload["catalog_path"])
    if "progress_poll_interval" in payload:
        config.progress_poll_interval = float(payload["progress_poll_interval"])

    for section in ("openai", "engine", "services", "delivery"):
        if section not in payload:
            continue
        target = getattr(config, section)
        for key, value in payload[section].items():
            if hasattr(target, key):
                setattr(target, key, value)

    if "paths" in payload:
        override = payload["paths"]
        root = Path(override.get("root", config.paths.root))
        paths = build_paths(root)
        if "data_dir" in override:
            paths.data_dir = Path(override["data_dir"])
        if "content_dir" in override:
            paths.content_dir = Path(override["content_dir"])
        if "db_path" in override:
            paths.db_path = Path(override["db_path"])
        config.paths = paths
