from __future__ import annotations

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv


def _try_load_env() -> None:
    """
    Load the repo-root .env if present so running tests locally is easy.
    """
    repo_root = Path(__file__).resolve().parents[1]
    env_path = repo_root / ".env"
    if env_path.exists():
        load_dotenv(env_path, override=False)


_try_load_env()


@pytest.fixture(scope="session")
def predikt_url() -> str:
    url = os.getenv("PREDIKT_URL")
    if not url:
        pytest.skip("PREDIKT_URL not set; start services/battles/main.py and point PREDIKT_URL at it.")
    return url


@pytest.fixture(scope="session")
def viewer_address() -> str:
    return os.getenv("PREDIKT_TEST_VIEWER", "0x1111111111111111111111111111111111111111")


@pytest.fixture(scope="session")
def rpc_url() -> str | None:
    return os.getenv("RPC_URL") or None


@pytest.fixture(scope="session")
def contract_address() -> str | None:
    # Live-chain tests skip unless this is present.
    return os.getenv("CONTRACT_ADDRESS") or None
