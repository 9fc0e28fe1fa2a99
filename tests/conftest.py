from typing import Any, Generator
from unittest.mock import patch

import pytest
from coreason_preview.models import ResourceLimits


@pytest.fixture
def limits() -> ResourceLimits:
    return ResourceLimits(startup_budget=5.0, memory_limit_mb=128, output_buffer_bytes=4096, kill_grace_period=0.5)


@pytest.fixture
def mock_docker_client() -> Generator[Any, None, None]:
    with patch("coreason_preview.runtimes.docker.docker.from_env") as mock:
        yield mock
