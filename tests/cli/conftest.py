import sys

import pytest
from loguru import logger
from typer.testing import CliRunner

from tabula.config import TabulaConfig


@pytest.fixture
def cli_config(app_config: TabulaConfig) -> TabulaConfig:
    """Quiet config for command tests; only errors reach the captured streams."""
    app_config.log_level = "ERROR"
    yield app_config
    # the CLI points loguru at the runner's streams, which are closed afterwards
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def runner(cli_config) -> CliRunner:
    return CliRunner()
