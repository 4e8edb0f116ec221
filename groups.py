"""
Study groups joined by invite code.

Membership is a set keyed by ``userId`` stored as the ``members`` array of the
group document. Adding a member is a single conditional ``$push`` that only
matches while the user is absent, so concurrent joins cannot duplicate or
drop entries.
"""
import logging
import secrets
from typing import Callable, List, Optional, Sequence

from pymongo.errors import DuplicateKeyError

from database import GROUP_SHARED_COURSES, GROUPS, DocumentStore, Subscription, object_id, utcnow
from errors import AlreadyMemberError, ForbiddenError, NotFoundError, TransientStoreError, ValidationError
from schemas import Group, Profile

logger = logging.getLogger(__name__)

# No 0/O or 1/I
INVITE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
INVITE_CODE_LENGTH = 6
MAX_INVITE_CODE_ATTEMPTS = 8


def generate_invite_code() -> str:
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


def _member_entry(profile: Profile) -> dict:
    return {
        "userId": profile.userId,
        "username": profile.username,
        "email": profile.email,
        "joinedAt": utcnow(),
    }


class GroupService:
    def __init__(self, store: DocumentStore, code_factory: Callable[[], str] = generate_invite_code):
        self.store = store
        self.code_factory = code_factory

    def create_group(self, name: str, initial_members: Sequence[Profile], creator_profile: Profile) -> Group:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Group name is required")
        if not initial_members:
            raise ValidationError("Select at least one member")

        members = []
        seen = set()
        for profile in [creator_profile, *initial_members]:
            if profile.userId in seen:
                continue
            seen.add(profile.userId)
            members.append(_member_entry(profile))

        for _ in range(MAX_INVITE_CODE_ATTEMPTS):
            code = self.code_factory()
            if self.store.find_one(GROUPS, {"inviteCode": code}):
                continue
            try:
                doc = self.store.insert(GROUPS, {
                    "name": name,
                    "creatorId": creator_profile.userId,
                    "creatorUsername": creator_profile.username,
                    "inviteCode": code,
                    "members": members,
                })
            except DuplicateKeyError:
                continue
            logger.info("Group %s created by %s with %d members", doc["id"], creator_profile.userId, len(members))
            return Group.model_validate(doc)
        raise TransientStoreError("Could not allocate an invite code. Please retry.")

    def get_group(self, group_id: str) -> Group:
        doc = self.store.get(GROUPS, group_id)
        if not doc:
            raise NotFoundError("Group not found")
        return Group.model_validate(doc)

    def require_member(self, group_id: str, user_id: str) -> Group:
        group = self.get_group(group_id)
        if not group.has_member(user_id):
            raise ForbiddenError("You are not a member of this group")
        return group

    def join_by_code(self, code: str, joiner_profile: Profile) -> Group:
        code = (code or "").strip().upper()
        if not code:
            raise ValidationError("Invite code is required")
        doc = self.store.find_one(GROUPS, {"inviteCode": code})
        if not doc:
            raise NotFoundError("Invalid invite code")
        return self._add_member(doc["id"], joiner_profile)

    def add_member(self, group_id: str, profile: Profile, actor_id: Optional[str] = None) -> Group:
        """Add ``profile`` to the group. Any existing member may add others."""
        if actor_id is not None:
            self.require_member(group_id, actor_id)
        return self._add_member(group_id, profile)

    def _add_member(self, group_id: str, profile: Profile) -> Group:
        oid = object_id(group_id)
        if oid is None:
            raise NotFoundError("Group not found")
        updated = self.store.update_one(
            GROUPS,
            {"_id": oid, "members.userId": {"$ne": profile.userId}},
            {"$push": {"members": _member_entry(profile)}},
        )
        if updated is None:
            if self.store.get(GROUPS, group_id) is None:
                raise NotFoundError("Group not found")
            raise AlreadyMemberError("User is already a member")
        logger.info("User %s joined group %s", profile.userId, group_id)
        return Group.model_validate(updated)

    def delete_group(self, group_id: str, actor_id: Optional[str] = None) -> None:
        group = self.get_group(group_id)
        if actor_id is not None and actor_id != group.creatorId:
            raise ForbiddenError("Only the group creator can delete the group")
        self.store.delete_one(GROUPS, {"_id": object_id(group.id)})
        removed = self.store.delete_many(GROUP_SHARED_COURSES, {"groupId": group.id})
        logger.info("Group %s deleted with %d shared courses", group.id, removed)

    def list_groups_for_user(self, user_id: str) -> List[Group]:
        docs = self.store.find(GROUPS, self._membership_query(user_id))
        return [Group.model_validate(d) for d in docs]

    def count_groups_for_user(self, user_id: str) -> int:
        return self.store.count(GROUPS, self._membership_query(user_id))

    def watch_groups_for_user(self, user_id: str, callback: Callable[[List[Group]], None]) -> Subscription:
        return self.store.subscribe(
            GROUPS,
            self._membership_query(user_id),
            lambda docs: callback([Group.model_validate(d) for d in docs]),
        )

    @staticmethod
    def _membership_query(user_id: str) -> dict:
        return {"$or": [{"members.userId": user_id}, {"creatorId": user_id}]}
