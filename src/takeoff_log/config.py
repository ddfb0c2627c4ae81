from __future__ import annotations
import os
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel

DEFAULT_CONFIG_PATH = ".takeoff.yaml"
DEFAULT_MODEL = "gpt-3.5-turbo"
DEFAULT_AI_TIMEOUT = 45.0


class AIConfig(BaseModel):
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    timeout: float = DEFAULT_AI_TIMEOUT
    temperature: float = 0.7
    max_tokens: int = 1000

    @property
    def configured(self) -> bool:
        return bool(self.endpoint and self.api_key)


class ClientConfig(BaseModel):
    base_url: str = "http://localhost:8000"
    token: Optional[str] = None
    cache_path: str = os.path.join("~", ".takeoff", "log.json")
    timeout: int = 30

    @property
    def authenticated(self) -> bool:
        return bool(self.token)


class AppConfig(BaseModel):
    ai: AIConfig = AIConfig()
    client: ClientConfig = ClientConfig()


def _env_overrides(env: Dict[str, str]) -> Dict[str, Dict[str, Any]]:
    pairs = {
        "ai": {"endpoint": "AI_ENDPOINT", "api_key": "AI_API_KEY", "model": "AI_MODEL", "timeout": "AI_TIMEOUT"},
        "client": {"base_url": "TAKEOFF_BASE_URL", "token": "TAKEOFF_TOKEN", "cache_path": "TAKEOFF_CACHE"},
    }
    out: Dict[str, Dict[str, Any]] = {}
    for section, names in pairs.items():
        for field, var in names.items():
            v = env.get(var)
            if v:
                out.setdefault(section, {})[field] = v
    return out


def load_config(path: str = DEFAULT_CONFIG_PATH, env: Optional[Dict[str, str]] = None) -> AppConfig:
    """
    Read `path` (YAML) if present, fill defaults, then apply environment overrides.

        ai:
          endpoint: https://api.openai.com/v1
          model: gpt-4o-mini
        client:
          base_url: https://xyz.lambda-url.us-west-2.on.aws
    """
    data: Dict[str, Any] = {}
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")

    env = dict(os.environ) if env is None else env
    for section, values in _env_overrides(env).items():
        merged = dict(data.get(section) or {})
        merged.update(values)
        data[section] = merged

    return AppConfig.model_validate(data)
