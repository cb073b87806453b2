"""
Dispatching profile resolver.

Instead of probing the patient, mentor and generic-account services one after
another, the resolver asks the kind index once which space owns an id and
queries only that directory. Ids the index does not know go to the generic
account directory; anything still unresolved becomes the "Unknown User"
placeholder. Resolution never raises.
"""

import asyncio
import logging
from typing import Iterable, Mapping
from uuid import UUID

from .directory import ContactDirectory, KindIndex
from .models import ContactKind, ContactProfile

logger = logging.getLogger(__name__)


class ProfileResolver:
    """
    Resolve participant ids to display profiles.

    Args:
        directories: One directory per ContactKind (missing kinds are allowed).
        kind_index: Maps a user id to the directory that owns it.
    """

    def __init__(self, directories: Mapping[ContactKind, ContactDirectory], kind_index: KindIndex):
        self._directories = dict(directories)
        self._kind_index = kind_index

    async def resolve(self, user_id: UUID) -> ContactProfile:
        """
        Return the profile of `user_id`; the placeholder when nobody knows it
        or a directory fails.
        """
        try:
            kind = await self._kind_index.kind_of(user_id)
            directory = self._directories.get(kind) if kind else None
            if directory is None:
                directory = self._directories.get(ContactKind.GENERIC)

            profile = await directory.get(user_id) if directory is not None else None
        except Exception:
            # External collaborator: a broken directory must not break conversation views.
            logger.warning("profiles.resolve_failed", exc_info=True, extra={"user_id": user_id})
            profile = None

        if profile is None:
            logger.debug("profiles.placeholder", extra={"user_id": user_id})
            return ContactProfile.placeholder(user_id)
        return profile

    async def resolve_many(self, user_ids: Iterable[UUID]) -> dict[UUID, ContactProfile]:
        """Resolve several ids concurrently; duplicates are resolved once."""
        unique_ids = list(dict.fromkeys(user_ids))
        profiles = await asyncio.gather(*(self.resolve(user_id) for user_id in unique_ids))
        return dict(zip(unique_ids, profiles))

    async def available_contacts(
        self,
        kinds: Iterable[ContactKind] = (ContactKind.MENTOR, ContactKind.PATIENT, ContactKind.GENERIC),
        exclude: UUID | None = None,
    ) -> list[ContactProfile]:
        """
        Contacts a session can start a conversation with, in the order of `kinds`.
        """
        contacts: list[ContactProfile] = []
        for kind in kinds:
            directory = self._directories.get(kind)
            if directory is None:
                continue
            try:
                listed = await directory.list_contacts()
            except Exception:
                logger.warning("profiles.list_failed", exc_info=True, extra={"kind": kind.value})
                continue
            contacts.extend(profile for profile in listed if profile.id != exclude)
        return contacts
