import json
from pathlib import Path

import pytest

from minifactory.config_loader import MinifactoryConfig, load_config


@pytest.fixture
def config(tmp_path: Path) -> MinifactoryConfig:
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    return load_config(environ={"DATADIR": str(data_dir)})


@pytest.fixture
def write_assignment(config: MinifactoryConfig):
    def _write(project: str = "demo", instructions: str = "add a footer", version: str | None = None) -> Path:
        path = config.assignment_path
        path.write_text(json.dumps({
            "project": project,
            "instructions": instructions,
            "version": version,
        }))
        return path

    return _write
