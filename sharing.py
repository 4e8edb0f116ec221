"""
Point-to-point problem sharing.

A share is a snapshot: question and solutions are copied when the share is
created and never re-read, so later edits or deletes in the sender's store do
not reach shares already sent. The only mutable field is ``status``.
"""
import logging
from typing import Callable, List, Optional

from content import ContentStore
from database import COURSES, SHARED_PROBLEMS, TOPICS, DocumentStore, Subscription, object_id
from errors import ForbiddenError, NotFoundError
from profiles import ProfileDirectory
from schemas import Profile, QuestionSnapshot, SharedProblem, SolutionSnapshot

logger = logging.getLogger(__name__)

PENDING = "pending"
VIEWED = "viewed"


class SharingService:
    def __init__(self, store: DocumentStore, content: ContentStore, profiles: ProfileDirectory):
        self.store = store
        self.content = content
        self.profiles = profiles

    def create_share(self, question_id: str, recipient_id: str, sender_profile: Profile,
                     question_snapshot: QuestionSnapshot, solution_snapshots: List[SolutionSnapshot],
                     course_context: Optional[str], topic_context: Optional[str],
                     recipient_username: Optional[str] = None) -> SharedProblem:
        doc = self.store.insert(SHARED_PROBLEMS, {
            "questionId": question_id,
            "questionData": question_snapshot.model_dump(),
            "solutions": [s.model_dump() for s in solution_snapshots],
            "senderId": sender_profile.userId,
            "senderUsername": sender_profile.username,
            "senderEmail": sender_profile.email,
            "recipientId": recipient_id,
            "recipientUsername": recipient_username,
            "courseContext": course_context,
            "topicContext": topic_context,
            "status": PENDING,
        })
        logger.info("Share %s sent from %s to %s", doc["id"], sender_profile.userId, recipient_id)
        return SharedProblem.model_validate(doc)

    def share_question(self, sender_profile: Profile, question_id: str, recipient_id: str) -> SharedProblem:
        """Snapshot one of the sender's questions with its solutions and send it."""
        recipient = self.profiles.get_profile(recipient_id)
        if recipient is None:
            raise NotFoundError("Recipient not found")
        owner = sender_profile.userId
        question = self.content.question(owner, question_id)
        solutions = self.content.solutions(owner, question_id)
        course = self.content.get(owner, COURSES, question.courseId)
        topic = self.content.get(owner, TOPICS, question.topicId)
        return self.create_share(
            question_id=question.id,
            recipient_id=recipient.userId,
            sender_profile=sender_profile,
            question_snapshot=QuestionSnapshot(title=question.title, bodyText=question.bodyText),
            solution_snapshots=[
                SolutionSnapshot(kind=s.kind, content=s.content, createdAt=s.createdAt) for s in solutions
            ],
            course_context=course["name"] if course else None,
            topic_context=topic["name"] if topic else None,
            recipient_username=recipient.username,
        )

    def get_share(self, share_id: str) -> SharedProblem:
        doc = self.store.get(SHARED_PROBLEMS, share_id)
        if not doc:
            raise NotFoundError("Shared problem not found")
        return SharedProblem.model_validate(doc)

    def open_share(self, share_id: str, viewer_id: str) -> SharedProblem:
        share = self.get_share(share_id)
        if share.recipientId != viewer_id:
            raise ForbiddenError("This problem was not shared with you")
        if share.status == PENDING:
            share = self.mark_viewed(share_id)
        return share

    def list_inbox(self, user_id: str) -> List[SharedProblem]:
        docs = self.store.find(SHARED_PROBLEMS, {"recipientId": user_id})
        return [SharedProblem.model_validate(d) for d in docs]

    def count_unread(self, user_id: str) -> int:
        return self.store.count(SHARED_PROBLEMS, {"recipientId": user_id, "status": PENDING})

    def mark_viewed(self, share_id: str) -> SharedProblem:
        oid = object_id(share_id)
        if oid is None:
            raise NotFoundError("Shared problem not found")
        updated = self.store.update_one(
            SHARED_PROBLEMS, {"_id": oid, "status": PENDING}, {"$set": {"status": VIEWED}}
        )
        if updated is None:
            # Already viewed is a no-op; anything else is a missing share.
            return self.get_share(share_id)
        return SharedProblem.model_validate(updated)

    # ----------------------- Live queries -----------------------
    def watch_inbox(self, user_id: str, callback: Callable[[List[SharedProblem]], None]) -> Subscription:
        return self.store.subscribe(
            SHARED_PROBLEMS,
            {"recipientId": user_id},
            lambda docs: callback([SharedProblem.model_validate(d) for d in docs]),
        )

    def watch_unread(self, user_id: str, callback: Callable[[int], None]) -> Subscription:
        return self.store.subscribe_count(SHARED_PROBLEMS, {"recipientId": user_id, "status": PENDING}, callback)
