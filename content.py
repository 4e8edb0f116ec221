"""
Personal content store: Course -> Topic -> Question -> Solution per user.

Every read and write is scoped by ``ownerId``; one user can never touch
another user's documents through this class. Deletes cascade down the tree.
"""
import logging
from typing import Any, Dict, List, Optional

from database import (
    COURSES,
    GROUP_SHARED_COURSES,
    QUESTIONS,
    SOLUTIONS,
    TOPICS,
    Document,
    DocumentStore,
    Subscription,
    SnapshotCallback,
    object_id,
)
from errors import NotFoundError, ValidationError
from schemas import COLOR_THEMES, ICON_NAMES, Course, Question, Solution, Topic

logger = logging.getLogger(__name__)

SOLUTION_KINDS = ("text", "code")


def _required(value: Optional[str], label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{label} is required")
    return value


class ContentStore:
    def __init__(self, store: DocumentStore):
        self.store = store

    # ----------------------- Generic operations -----------------------
    def list(self, owner_id: str, collection: str, filter_field: Optional[str] = None,
             filter_value: Any = None) -> List[Document]:
        return self.store.find(collection, self._query(owner_id, filter_field, filter_value))

    def get(self, owner_id: str, collection: str, item_id: str) -> Optional[Document]:
        oid = object_id(item_id)
        if oid is None:
            return None
        return self.store.find_one(collection, {"_id": oid, "ownerId": owner_id})

    def create(self, owner_id: str, collection: str, fields: Dict[str, Any]) -> Document:
        # ownerId and createdAt always come from the server
        data = {k: v for k, v in fields.items() if k not in ("ownerId", "createdAt")}
        data["ownerId"] = owner_id
        return self.store.insert(collection, data)

    def delete(self, owner_id: str, collection: str, item_id: str) -> bool:
        oid = object_id(item_id)
        if oid is None:
            return False
        if not self.store.delete_one(collection, {"_id": oid, "ownerId": owner_id}):
            return False
        self._delete_children(owner_id, collection, str(oid))
        return True

    def watch(self, owner_id: str, collection: str, filter_field: Optional[str], filter_value: Any,
              callback: SnapshotCallback) -> Subscription:
        return self.store.subscribe(collection, self._query(owner_id, filter_field, filter_value), callback)

    @staticmethod
    def _query(owner_id: str, filter_field: Optional[str], filter_value: Any) -> Document:
        flt: Document = {"ownerId": owner_id}
        if filter_field:
            flt[filter_field] = filter_value
        return flt

    def _delete_children(self, owner_id: str, collection: str, item_id: str) -> None:
        if collection == COURSES:
            parent = {"ownerId": owner_id, "courseId": item_id}
            self.store.delete_many(TOPICS, parent)
            self.store.delete_many(GROUP_SHARED_COURSES, {"sharedBy": owner_id, "courseId": item_id})
        elif collection == TOPICS:
            parent = {"ownerId": owner_id, "topicId": item_id}
        elif collection == QUESTIONS:
            self.store.delete_many(SOLUTIONS, {"ownerId": owner_id, "questionId": item_id})
            return
        else:
            return
        question_ids = [q["id"] for q in self.store.find(QUESTIONS, parent)]
        if question_ids:
            self.store.delete_many(SOLUTIONS, {"ownerId": owner_id, "questionId": {"$in": question_ids}})
            self.store.delete_many(QUESTIONS, parent)
        logger.info("Cascaded delete of %s %s removed %d questions", collection, item_id, len(question_ids))

    def _require(self, owner_id: str, collection: str, item_id: str, label: str) -> Document:
        doc = self.get(owner_id, collection, item_id)
        if not doc:
            raise NotFoundError(f"{label} not found")
        return doc

    # ----------------------- Courses -----------------------
    def create_course(self, owner_id: str, name: str, color_theme: Optional[str] = None,
                      icon_name: Optional[str] = None) -> Course:
        name = _required(name, "Course name")
        color_theme = color_theme or COLOR_THEMES[0]
        icon_name = icon_name or ICON_NAMES[0]
        if color_theme not in COLOR_THEMES:
            raise ValidationError("Unknown color theme")
        if icon_name not in ICON_NAMES:
            raise ValidationError("Unknown icon")
        doc = self.create(owner_id, COURSES, {"name": name, "colorTheme": color_theme, "iconName": icon_name})
        return Course.model_validate(doc)

    def courses(self, owner_id: str) -> List[Course]:
        return [Course.model_validate(d) for d in self.list(owner_id, COURSES)]

    def course(self, owner_id: str, course_id: str) -> Course:
        return Course.model_validate(self._require(owner_id, COURSES, course_id, "Course"))

    # ----------------------- Topics -----------------------
    def create_topic(self, owner_id: str, course_id: str, name: str) -> Topic:
        name = _required(name, "Topic name")
        self._require(owner_id, COURSES, course_id, "Course")
        doc = self.create(owner_id, TOPICS, {"courseId": course_id, "name": name})
        return Topic.model_validate(doc)

    def topics(self, owner_id: str, course_id: str) -> List[Topic]:
        return [Topic.model_validate(d) for d in self.list(owner_id, TOPICS, "courseId", course_id)]

    def topic(self, owner_id: str, topic_id: str) -> Topic:
        return Topic.model_validate(self._require(owner_id, TOPICS, topic_id, "Topic"))

    # ----------------------- Questions -----------------------
    def create_question(self, owner_id: str, topic_id: str, title: str, body_text: str) -> Question:
        title = _required(title, "Question title")
        body_text = _required(body_text, "Question text")
        topic = self._require(owner_id, TOPICS, topic_id, "Topic")
        doc = self.create(owner_id, QUESTIONS, {
            "topicId": topic_id,
            "courseId": topic["courseId"],
            "title": title,
            "bodyText": body_text,
        })
        return Question.model_validate(doc)

    def questions(self, owner_id: str, topic_id: str) -> List[Question]:
        return [Question.model_validate(d) for d in self.list(owner_id, QUESTIONS, "topicId", topic_id)]

    def question(self, owner_id: str, question_id: str) -> Question:
        return Question.model_validate(self._require(owner_id, QUESTIONS, question_id, "Question"))

    # ----------------------- Solutions -----------------------
    def create_solution(self, owner_id: str, question_id: str, kind: str, content: str) -> Solution:
        if kind not in SOLUTION_KINDS:
            raise ValidationError("Solution kind must be 'text' or 'code'")
        if not (content or "").strip():
            raise ValidationError("Solution content is required")
        self._require(owner_id, QUESTIONS, question_id, "Question")
        doc = self.create(owner_id, SOLUTIONS, {"questionId": question_id, "kind": kind, "content": content})
        return Solution.model_validate(doc)

    def solutions(self, owner_id: str, question_id: str) -> List[Solution]:
        return [Solution.model_validate(d) for d in self.list(owner_id, SOLUTIONS, "questionId", question_id)]
