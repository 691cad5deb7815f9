from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import List, MutableMapping, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def apply_policy_defaults(path: Optional[Path], env: Optional[MutableMapping[str, str]] = None) -> List[str]:
    """Set default environment variables from a policy JSON if not already set.

    Only missing or blank variables are filled. Returns the names that were set.
    """
    if path is None or not Path(path).exists():
        return []
    env = os.environ if env is None else env
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Policy file {path} is not valid JSON: {exc}", field="policyPath") from exc
    env_defaults = payload.get("env_defaults") or {}
    applied = []
    for key, value in env_defaults.items():
        if str(env.get(key, "")).strip() == "":
            env[key] = str(value)
            applied.append(key)
    if applied:
        logger.debug("Policy %s set %s", path, ", ".join(applied))
    return applied
