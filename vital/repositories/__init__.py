"""
Repository Layer Package.

Data-access abstractions over Supabase.  Services depend on the
``ProfileStore`` protocol and never touch ``db.supabase`` directly.

Usage:
    from vital.repositories.profile_repository import ProfileRepository
"""

from vital.repositories.base_repository import BaseRepository
from vital.repositories.profile_repository import ProfileRepository, ProfileStore

__all__ = [
    "BaseRepository",
    "ProfileRepository",
    "ProfileStore",
]
