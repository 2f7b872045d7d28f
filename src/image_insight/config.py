import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import dotenv_values

from .logging import get_logger
from .paths import find_project_root, find_upwards, var_dir

log = get_logger("config")

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash-preview-05-20"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_APP_ID = "default-app-id"
DEFAULT_HTTP_TIMEOUT = 120


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Return key/value pairs from the nearest .env (does not touch os.environ)."""
    path = find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    values = {k: v.strip() for k, v in dotenv_values(path).items() if k and v is not None}
    log.debug(f"Loaded {len(values)} key(s) from .env at {path}")
    return values


def _lookup(name: str, env: Dict[str, str]) -> Optional[str]:
    v = os.environ.get(name)
    if v and v.strip():
        return v.strip()
    v = env.get(name) or env.get(name.lower())
    return v.strip() if v else None


@dataclass(frozen=True)
class Settings:
    """Process-level settings; per-user values live in the config document."""

    gemini_model: str
    gemini_base_url: str
    app_id: str
    http_timeout: int
    store_path: str
    root_dir: str
    seed_api_key: Optional[str] = None
    initial_auth_token: Optional[str] = None


def load_settings(dotenv_dir: Optional[str] = None) -> Settings:
    """Resolve settings from the environment with .env fallback."""
    start = dotenv_dir or os.getcwd()
    env = _read_dotenv(start)
    root = find_project_root(start)

    timeout_raw = _lookup("HTTP_TIMEOUT", env)
    try:
        timeout = int(timeout_raw) if timeout_raw else DEFAULT_HTTP_TIMEOUT
    except ValueError:
        log.warning(f"HTTP_TIMEOUT={timeout_raw!r} is not an integer; using {DEFAULT_HTTP_TIMEOUT}s")
        timeout = DEFAULT_HTTP_TIMEOUT

    store_path = _lookup("IMAGE_INSIGHT_STORE", env) or os.path.join(
        var_dir(root), "documents", "store.sqlite3"
    )

    settings = Settings(
        gemini_model=_lookup("GEMINI_MODEL", env) or DEFAULT_GEMINI_MODEL,
        gemini_base_url=(_lookup("GEMINI_BASE_URL", env) or DEFAULT_GEMINI_BASE_URL).rstrip("/"),
        app_id=_lookup("IMAGE_INSIGHT_APP_ID", env) or DEFAULT_APP_ID,
        http_timeout=timeout,
        store_path=store_path,
        root_dir=root,
        seed_api_key=_lookup("GEMINI_API_KEY", env),
        initial_auth_token=_lookup("IMAGE_INSIGHT_AUTH_TOKEN", env),
    )
    if settings.seed_api_key:
        log.info("Found GEMINI_API_KEY in env/.env (used only when no key is stored)")
    return settings
