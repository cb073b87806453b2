from .models import ContactKind, ContactProfile, UNKNOWN_USER_NAME
from .directory import (
    ContactDirectory,
    KindIndex,
    InMemoryContactDirectory,
    InMemoryKindIndex,
    build_in_memory_directories,
    load_directories,
)
from .resolver import ProfileResolver

__all__ = [
    "ContactKind",
    "ContactProfile",
    "UNKNOWN_USER_NAME",
    "ContactDirectory",
    "KindIndex",
    "InMemoryContactDirectory",
    "InMemoryKindIndex",
    "build_in_memory_directories",
    "load_directories",
    "ProfileResolver",
]
