import re
from typing import List, Optional

from database import PROFILES, DocumentStore, utcnow
from errors import ValidationError
from schemas import Profile

MIN_USERNAME_LENGTH = 3
MIN_SEARCH_LENGTH = 2


class ProfileDirectory:
    """Public username/email records, one per user, keyed by userId."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def get_profile(self, user_id: str) -> Optional[Profile]:
        doc = self.store.find_one(PROFILES, {"_id": user_id})
        return Profile.model_validate(doc) if doc else None

    def create_profile(self, user_id: str, email: str, username: str) -> Profile:
        username = (username or "").strip()
        if len(username) < MIN_USERNAME_LENGTH:
            raise ValidationError(f"Username must be at least {MIN_USERNAME_LENGTH} characters")
        # Last write wins on concurrent creation.
        doc = self.store.upsert(PROFILES, user_id, {
            "userId": user_id,
            "email": email,
            "username": username,
            "createdAt": utcnow(),
        })
        return Profile.model_validate(doc)

    def search_profiles(self, query: str, exclude_user_id: Optional[str] = None) -> List[Profile]:
        """Case-insensitive substring search over username and email.

        Runs as a regex scan over the whole directory, which is fine while the
        user base is small. A real deployment needs a search index here.
        """
        needle = (query or "").strip()
        if len(needle) < MIN_SEARCH_LENGTH:
            return []
        pattern = {"$regex": re.escape(needle), "$options": "i"}
        flt = {"$or": [{"username": pattern}, {"email": pattern}]}
        if exclude_user_id:
            flt["userId"] = {"$ne": exclude_user_id}
        docs = self.store.find(PROFILES, flt, sort=[("username", 1)])
        return [Profile.model_validate(d) for d in docs]
