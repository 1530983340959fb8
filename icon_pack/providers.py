"""
Module: icon_pack.providers
Purpose: Registry of the image-generation providers the backend can run

The set is fixed. A session only decides which of these are enabled.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional


@dataclass(frozen=True)
class Provider:
    """An external image-generation service."""
    id: str
    display_name: str


# Registry order is the display order of provider sections
PROVIDERS: List[Provider] = [
    Provider("flux", "Flux-Pro"),
    Provider("recraft", "Recraft V3"),
    Provider("photon", "Luma Photon"),
    Provider("gpt", "GPT Image"),
    Provider("imagen", "Imagen"),
]

_BY_ID: Dict[str, Provider] = {provider.id: provider for provider in PROVIDERS}


def provider_ids() -> List[str]:
    """Return every known provider id in registry order."""
    return [provider.id for provider in PROVIDERS]


def is_known(provider_id: str) -> bool:
    return provider_id in _BY_ID


def get_provider(provider_id: str) -> Optional[Provider]:
    return _BY_ID.get(provider_id)


def display_name(provider_id: str) -> str:
    """
    Human readable name for a provider id.

    Unknown ids are returned unchanged.
    """
    provider = _BY_ID.get(provider_id)
    return provider.display_name if provider else provider_id


def enabled_in_order(enabled: Mapping[str, bool]) -> List[str]:
    """
    Filter the registry down to the providers flagged as enabled.

    Args:
        enabled: ``enabledServices`` map from the submit response

    Returns:
        Enabled provider ids in registry order. Ids the registry does not
        know are skipped.
    """
    return [provider.id for provider in PROVIDERS if enabled.get(provider.id)]


def unknown_ids(ids: Iterable[str]) -> List[str]:
    return [provider_id for provider_id in ids if provider_id not in _BY_ID]
