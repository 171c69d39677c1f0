"""null_resource: records its attributes and touches nothing."""

import threading
import uuid
from typing import Any, Dict, Optional
from .base import ProviderResult, changed_keys


class NullProvider:
    """Any change to `triggers` forces a new id."""

    def __init__(self):
        self._objects: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def create(self, attributes: Dict[str, Any]) -> ProviderResult:
        provider_id = uuid.uuid4().hex
        with self._lock:
            self._objects[provider_id] = dict(attributes)
        return ProviderResult(provider_id=provider_id, attributes={"id": provider_id})

    def read(self, provider_id: str) -> Optional[Dict[str, Any]]:
        # Nothing exists outside the state, so an unseen id is still present.
        with self._lock:
            return dict(self._objects.get(provider_id, {"id": provider_id}))

    def update(self, provider_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self._objects[provider_id] = dict(attributes)
        return {"id": provider_id}

    def destroy(self, provider_id: str) -> None:
        with self._lock:
            self._objects.pop(provider_id, None)

    def requires_replacement(self, old_attributes: Dict[str, Any], new_attributes: Dict[str, Any]) -> bool:
        return "triggers" in changed_keys(old_attributes, new_attributes)
