"""
Contact directories: one variant per account space (patient, mentor, generic account).

A directory is the seam to the external profile services. The in-memory
implementation backs local development (seeded from a JSON file) and the tests;
production wiring plugs in implementations that call the real services.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable
from uuid import UUID

from .models import ContactKind, ContactProfile, UNKNOWN_USER_NAME

logger = logging.getLogger(__name__)


class ContactDirectory(ABC):
    """
    Lookup interface implemented by each account space.
    """

    kind: ContactKind

    @abstractmethod
    async def get(self, user_id: UUID) -> ContactProfile | None:
        """Return the profile for `user_id`, or None when this directory does not know it."""

    @abstractmethod
    async def list_contacts(self) -> list[ContactProfile]:
        """All contacts of this directory, in a stable order."""


class KindIndex(ABC):
    """Answers "which directory owns this user id?" in one lookup."""

    @abstractmethod
    async def kind_of(self, user_id: UUID) -> ContactKind | None:
        ...


def _display_name(kind: ContactKind, display_name: str | None, email: str | None) -> str:
    # Generic accounts often have no name; fall back to the e-mail local part.
    if display_name:
        return display_name
    if kind is ContactKind.GENERIC and email:
        return email.split("@", 1)[0]
    return UNKNOWN_USER_NAME


class InMemoryContactDirectory(ContactDirectory):
    """Directory backed by a dict; keeps insertion order for list_contacts()."""

    def __init__(self, kind: ContactKind, profiles: Iterable[ContactProfile] = ()):
        self.kind = kind
        self._profiles: dict[UUID, ContactProfile] = {}
        for profile in profiles:
            self.add(profile)

    def add(self, profile: ContactProfile) -> ContactProfile:
        normalized = profile.model_copy(
            update={
                "kind": self.kind,
                "display_name": _display_name(self.kind, profile.display_name, profile.email),
            }
        )
        self._profiles[normalized.id] = normalized
        return normalized

    async def get(self, user_id: UUID) -> ContactProfile | None:
        return self._profiles.get(user_id)

    async def list_contacts(self) -> list[ContactProfile]:
        return list(self._profiles.values())

    def __contains__(self, user_id: UUID) -> bool:
        return user_id in self._profiles


class InMemoryKindIndex(KindIndex):
    def __init__(self, kinds: dict[UUID, ContactKind] | None = None):
        self._kinds: dict[UUID, ContactKind] = dict(kinds or {})

    def register(self, user_id: UUID, kind: ContactKind) -> None:
        self._kinds[user_id] = kind

    async def kind_of(self, user_id: UUID) -> ContactKind | None:
        return self._kinds.get(user_id)


def build_in_memory_directories(
    profiles: Iterable[ContactProfile],
) -> tuple[dict[ContactKind, InMemoryContactDirectory], InMemoryKindIndex]:
    """
    Split a flat list of profiles into one directory per kind plus the kind index.
    """
    directories = {kind: InMemoryContactDirectory(kind) for kind in ContactKind}
    index = InMemoryKindIndex()
    for profile in profiles:
        directories[profile.kind].add(profile)
        index.register(profile.id, profile.kind)
    return directories, index


def load_directories(
    path: Path | str | None,
) -> tuple[dict[ContactKind, InMemoryContactDirectory], InMemoryKindIndex]:
    """
    Load a JSON seed file: a list of objects with id, display_name, kind and
    optionally avatar_url / email. A missing path yields empty directories.
    """
    if path is None:
        return build_in_memory_directories([])

    path = Path(path)
    with path.open("r", encoding="utf-8") as fh:
        raw = json.load(fh)

    profiles = [ContactProfile.model_validate(item) for item in raw]
    logger.info("profiles.seed_loaded", extra={"path": str(path), "count": len(profiles)})
    return build_in_memory_directories(profiles)
