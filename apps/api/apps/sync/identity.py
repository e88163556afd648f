"""
Temporary identifier detection and per-batch identity mapping.

Clients create records offline under placeholder identifiers such as
``temp_1001``. This module is the single place that decides whether a
value is such a placeholder and how it is swapped for the permanent id
assigned by the server. It has no Django dependency so the offline
client can share it.
"""
from typing import Dict, Iterable, Optional, Tuple

from .exceptions import UnknownTemporaryReference

DEFAULT_TEMP_ID_PREFIXES: Tuple[str, ...] = ('temp_', 'PAT-')


def looks_like_temporary_reference(value, prefixes: Iterable[str] = DEFAULT_TEMP_ID_PREFIXES) -> bool:
    """
    True when value is a client placeholder id.

    Detection is structural: only strings carrying one of the marker
    prefixes qualify. Integers and digit-only strings are permanent ids.
    """
    if not isinstance(value, str) or value.isdigit():
        return False
    return any(value.startswith(prefix) for prefix in prefixes)


class IdentityMapping:
    """
    ``temp_id -> permanent id`` associations built while one batch is applied.

    Populated only from successful ``create`` results; a fresh mapping
    is used for every batch.
    """

    def __init__(self, prefixes: Iterable[str] = DEFAULT_TEMP_ID_PREFIXES):
        self.prefixes = tuple(prefixes)
        self._ids: Dict[str, int] = {}
        self._models: Dict[str, str] = {}

    def register(self, temp_id: str, model: str, real_id: int) -> None:
        self._ids[temp_id] = real_id
        self._models[temp_id] = model

    def get(self, temp_id: str) -> Optional[int]:
        return self._ids.get(temp_id)

    def model_for(self, temp_id: str) -> Optional[str]:
        return self._models.get(temp_id)

    def __contains__(self, temp_id) -> bool:
        return temp_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def as_dict(self) -> Dict[str, int]:
        return dict(self._ids)


def resolve(value, mapping: IdentityMapping, mutation_index=None):
    """
    Rewrite a reference value against the mapping.

    Values that are not temporary references are returned unchanged.
    Temporary references not produced earlier in the batch raise
    UnknownTemporaryReference.
    """
    if not looks_like_temporary_reference(value, mapping.prefixes):
        return value
    real_id = mapping.get(value)
    if real_id is None:
        raise UnknownTemporaryReference(value, mutation_index=mutation_index)
    return real_id
