"""local_file: manages a file on the local filesystem."""

import hashlib
import os
from pathlib import Path
from typing import Any, Dict, Optional
from .base import ProviderResult, changed_keys
from ..utils.logging import get_logger

logger = get_logger("providers.local_file")

DEFAULT_PERMISSION = "0644"


class LocalFileProvider:
    """
    Attributes: `filename` (required), `content`, `file_permission`.

    The provider id is the absolute path. Moving the file (a new `filename`)
    forces replacement; content and permission changes are applied in place.
    """

    def _write(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        filename = attributes.get("filename")
        if not filename:
            raise ValueError("local_file requires a 'filename' attribute")

        path = Path(str(filename)).expanduser().resolve()
        content = attributes.get("content", "")
        if not isinstance(content, str):
            content = str(content)
        permission = attributes.get("file_permission", DEFAULT_PERMISSION)
        # YAML 1.1 already turns an unquoted 0644 into an int
        permission = permission if isinstance(permission, int) else int(str(permission), 8)

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        os.chmod(path, permission)
        logger.debug(f"Wrote {len(content)} bytes to {path}")
        return self._describe(path)

    def _describe(self, path: Path) -> Dict[str, Any]:
        data = path.read_bytes()
        return {
            "id": str(path),
            "filename": str(path),
            "sha256": hashlib.sha256(data).hexdigest(),
            "size": len(data),
        }

    def create(self, attributes: Dict[str, Any]) -> ProviderResult:
        outputs = self._write(attributes)
        return ProviderResult(provider_id=outputs["id"], attributes=outputs)

    def read(self, provider_id: str) -> Optional[Dict[str, Any]]:
        path = Path(provider_id)
        if not path.is_file():
            return None
        return self._describe(path)

    def update(self, provider_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        return self._write(attributes)

    def destroy(self, provider_id: str) -> None:
        Path(provider_id).unlink(missing_ok=True)
        logger.debug(f"Removed {provider_id}")

    def requires_replacement(self, old_attributes: Dict[str, Any], new_attributes: Dict[str, Any]) -> bool:
        return "filename" in changed_keys(old_attributes, new_attributes)
