from __future__ import annotations

import os
import time
from typing import Any, Dict, Optional, Tuple

import requests


DEFAULT_TIMEOUT = float(os.getenv("PREDIKT_TEST_HTTP_TIMEOUT_SECS", "8.0"))
RETRY_SECS = float(os.getenv("PREDIKT_TEST_RETRY_SECS", "0.5"))
RETRY_MAX = int(os.getenv("PREDIKT_TEST_RETRY_MAX", "20"))


class HttpError(RuntimeError):
    pass


def _join(base: str, path: str) -> str:
    if not base:
        raise ValueError("base url is empty")
    if not path.startswith("/"):
        path = "/" + path
    return base.rstrip("/") + path


def http_get(base: str, path: str, *, params: Optional[Dict[str, Any]] = None, timeout: float = DEFAULT_TIMEOUT) -> Tuple[int, Any, str]:
    r = requests.get(_join(base, path), params=params, timeout=timeout)
    text = r.text or ""
    try:
        body = r.json()
    except ValueError:
        body = None
    return r.status_code, body, text


def http_post_json(base: str, path: str, payload: Optional[Dict[str, Any]] = None, *, timeout: float = DEFAULT_TIMEOUT) -> Tuple[int, Any, str]:
    r = requests.post(_join(base, path), json=payload, timeout=timeout)
    text = r.text or ""
    try:
        body = r.json()
    except ValueError:
        body = None
    return r.status_code, body, text


def wait_for_health(base_url: str, health_path: str = "/health") -> None:
    url = _join(base_url, health_path)
    last_err: Optional[str] = None
    for _ in range(RETRY_MAX):
        try:
            r = requests.get(url, timeout=DEFAULT_TIMEOUT)
            if r.status_code < 400:
                return
            last_err = f"{r.status_code}: {r.text[:200]}"
        except requests.RequestException as e:
            last_err = str(e)
        time.sleep(RETRY_SECS)
    raise HttpError(f"Service not healthy at {url}. Last error: {last_err}")


def assert_clean_4xx(status_code: int) -> None:
    """
    Bad input must come back as a clean 4xx, never a 5xx.
    """
    assert status_code < 500, f"Unexpected 5xx: {status_code}"
    assert 400 <= status_code < 500, f"Unexpected status: {status_code}"
