"""
Cross-user read path for courses shared into a group.

A GroupCourseShare is only a pointer; every view walks the sharer's live
store Topic -> Questions -> Solutions. The per-topic and per-question reads
are independent, so each level is fetched concurrently and reassembled in
listing order.
"""
import asyncio
import logging
from typing import Any, Callable, List, TypeVar

from content import ContentStore
from database import COURSES, GROUP_SHARED_COURSES, QUESTIONS, SOLUTIONS, TOPICS, DocumentStore
from errors import NotFoundError, TransientStoreError
from groups import GroupService
from schemas import GroupSharedCourse, ProblemWithSolutions, Profile, Question, Solution, Topic

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AggregationService:
    def __init__(self, store: DocumentStore, content: ContentStore, groups: GroupService,
                 timeout_seconds: float = 10.0):
        self.store = store
        self.content = content
        self.groups = groups
        self.timeout_seconds = timeout_seconds

    def share_course_to_group(self, group_id: str, course_id: str, course_name: str,
                              sharer_profile: Profile) -> GroupSharedCourse:
        self.groups.require_member(group_id, sharer_profile.userId)
        if self.content.get(sharer_profile.userId, COURSES, course_id) is None:
            raise NotFoundError("Course not found")
        doc = self.store.insert(GROUP_SHARED_COURSES, {
            "groupId": group_id,
            "courseId": course_id,
            "courseName": course_name,
            "sharedBy": sharer_profile.userId,
            "sharedByUsername": sharer_profile.username,
        }, timestamp_field="sharedAt")
        logger.info("Course %s shared into group %s by %s", course_id, group_id, sharer_profile.userId)
        return GroupSharedCourse.model_validate(doc)

    def list_group_courses(self, group_id: str) -> List[GroupSharedCourse]:
        docs = self.store.find(GROUP_SHARED_COURSES, {"groupId": group_id},
                               sort=[("sharedAt", -1), ("_id", -1)])
        return [GroupSharedCourse.model_validate(d) for d in docs]

    def get_pointer(self, share_id: str) -> GroupSharedCourse:
        doc = self.store.get(GROUP_SHARED_COURSES, share_id)
        if not doc:
            raise NotFoundError("Shared course not found")
        return GroupSharedCourse.model_validate(doc)

    async def get_group_course_problems(self, share_id: str, viewer_id: str) -> List[ProblemWithSolutions]:
        pointer = await self._call(self.get_pointer, share_id)
        await self._call(self.groups.require_member, pointer.groupId, viewer_id)
        return await self.get_shared_course_problems(pointer.sharedBy, pointer.courseId)

    async def get_shared_course_problems(self, owner_user_id: str, course_id: str) -> List[ProblemWithSolutions]:
        topic_docs = await self._call(self.content.list, owner_user_id, TOPICS, "courseId", course_id)
        topics = [Topic.model_validate(d) for d in topic_docs]
        if not topics:
            return []

        question_lists = await asyncio.gather(*(
            self._call(self.content.list, owner_user_id, QUESTIONS, "topicId", topic.id) for topic in topics
        ))
        rows = [
            (topic, Question.model_validate(q))
            for topic, questions in zip(topics, question_lists)
            for q in questions
        ]

        solution_lists = await asyncio.gather(*(
            self._call(self.content.list, owner_user_id, SOLUTIONS, "questionId", question.id)
            for _, question in rows
        ))
        return [
            ProblemWithSolutions(
                **question.model_dump(),
                topicName=topic.name,
                solutions=[Solution.model_validate(s) for s in solutions],
            )
            for (topic, question), solutions in zip(rows, solution_lists)
        ]

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error("Store call %s timed out after %ss", getattr(fn, "__name__", fn), self.timeout_seconds)
            raise TransientStoreError("Storage timed out. Please retry.")
