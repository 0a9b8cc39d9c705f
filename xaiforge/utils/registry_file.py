"""JSON registry file shared by the dataset registry and the model store."""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


class RegistryFile:
    """A JSON object on disk, mapping record id to record dict."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> Dict[str, Dict[str, Any]]:
        """Load the registry from disk; a missing or empty file is an empty registry."""
        if not self.path.exists():
            logger.debug(f"Registry file {self.path} does not exist, returning empty dict")
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            content = f.read().strip()
        if not content:
            return {}
        return json.loads(content)

    def save(self, registry: Dict[str, Dict[str, Any]]) -> None:
        """Write the registry atomically so readers never see a partial file."""
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".registry-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(registry, f, indent=2, default=str)
            os.replace(tmp_name, self.path)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Registry saved to {self.path}")
