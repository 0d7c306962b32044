import hashlib
import json
import os
from typing import Any, Dict, Optional

import yaml

ENV_PREFIX = "CLAIM_LEDGER__"

DEFAULTS: Dict[str, Any] = {
    "config_version": "1.0",
    "storage_type": "memory",
    "tree_height": 20,
    "database_url": None,
    "log_level": "INFO",
    "broadcast_queue_size": 100,
}


class LedgerConfig:
    """
    Effective configuration: defaults < YAML file < CLAIM_LEDGER__* environment.
    """

    def __init__(self, path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        environ = os.environ if environ is None else environ
        self.path = path or environ.get("CLAIM_LEDGER_CONFIG", "config.yaml")

        data = dict(DEFAULTS)
        if os.path.exists(self.path):
            with open(self.path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise ValueError(f"Config file {self.path} must contain a mapping")
            data.update(loaded)

        for key, value in environ.items():
            if key.startswith(ENV_PREFIX):
                # yaml parsing turns "20" into 20 and "true" into True
                data[key[len(ENV_PREFIX):].lower()] = yaml.safe_load(value)

        self._data = data
        self.config_version = str(data.get("config_version", "1.0"))
        self.config_digest = hashlib.sha256(
            json.dumps(data, sort_keys=True, default=str).encode("utf-8")
        ).hexdigest()

    @property
    def storage_type(self) -> str:
        return self._data.get("storage_type", "memory")

    @property
    def tree_height(self) -> int:
        return int(self._data.get("tree_height", 20))

    @property
    def database_url(self) -> Optional[str]:
        return self._data.get("database_url")

    @property
    def log_level(self) -> str:
        return str(self._data.get("log_level", "INFO")).upper()

    @property
    def broadcast_queue_size(self) -> int:
        return int(self._data.get("broadcast_queue_size", 100))


settings = LedgerConfig()
