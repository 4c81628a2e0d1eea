from __future__ import annotations

import json
from pathlib import Path

from bizbox.config import build_paths, load_config


def test_defaults_follow_working_directory(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    config = load_config(None, dry_run=True)

    assert config.dry_run is True
    assert config.paths.db_path == tmp_path / "var" / "bizbox.sqlite"
    assert config.database_url == f"sqlite:///{tmp_path / 'var' / 'bizbox.sqlite'}"
    assert config.engine.max_parallel_items == 1
    assert config.services.side_effect_max_attempts == 1


def test_file_overrides_known_keys(tmp_path: Path):
    path = tmp_path / "bizbox.json"
    path.write_text(
        json.dumps(
            {
                "environment": "staging",
                "dry_run": True,
                "progress_poll_interval": 0.5,
                "openai": {"model": "gpt-test", "unknown_key": 1},
                "engine": {"max_parallel_items": 4},
                "services": {"logo_variations": 2},
                "delivery": {"link_ttl_seconds": 60},
                "paths": {"root": str(tmp_path / "data"), "db_path": str(tmp_path / "custom.sqlite")},
            }
        ),
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.environment == "staging"
    assert config.dry_run is True
    assert config.progress_poll_interval == 0.5
    assert config.openai.model == "gpt-test"
    assert not hasattr(config.openai, "unknown_key")
    assert config.engine.max_parallel_items == 4
    assert config.services.logo_variations == 2
    assert config.delivery.link_ttl_seconds == 60
    assert config.paths.content_dir == build_paths(tmp_path / "data").content_dir
    assert config.paths.db_path == tmp_path / "custom.sqlite"


def test_to_dict_is_json_serialisable(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = load_config(None)

    payload = json.loads(json.dumps(config.to_dict()))

    assert payload["paths"]["root"] == str(tmp_path)
    assert payload["openai"]["api_key_env"] == "OPENAI_API_KEY"
