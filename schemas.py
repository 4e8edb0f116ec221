"""
Database Schemas for DevStudy (study notes, shared problems and groups)

Each Pydantic model corresponds to a MongoDB collection; see database.py for
the collection names. Documents come out of the store with ``id`` in place of
``_id`` and are validated into these models by the services.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

# Course gradient presets
COLOR_THEMES = [
    "linear-gradient(135deg, #667eea 0%, #764ba2 100%)",
    "linear-gradient(135deg, #00e054 0%, #40bcf4 100%)",
    "linear-gradient(135deg, #f093fb 0%, #f5576c 100%)",
    "linear-gradient(135deg, #4facfe 0%, #00f2fe 100%)",
    "linear-gradient(135deg, #fa709a 0%, #fee140 100%)",
    "linear-gradient(135deg, #a8edea 0%, #fed6e3 100%)",
    "linear-gradient(135deg, #ff6b6b 0%, #feca57 100%)",
    "linear-gradient(135deg, #5f27cd 0%, #341f97 100%)",
]

ICON_NAMES = ["Code", "CPU", "Globe", "Palette", "Book", "Graduation", "Sparkles"]

SolutionKind = Literal["text", "code"]
ShareStatus = Literal["pending", "viewed"]


class User(BaseModel):
    id: str
    email: EmailStr


class Profile(BaseModel):
    userId: str
    email: str
    username: str
    createdAt: Optional[datetime] = None


class Course(BaseModel):
    id: str
    ownerId: str
    name: str
    colorTheme: str = COLOR_THEMES[0]
    iconName: str = ICON_NAMES[0]
    createdAt: Optional[datetime] = None


class Topic(BaseModel):
    id: str
    ownerId: str
    courseId: str
    name: str
    createdAt: Optional[datetime] = None


class Question(BaseModel):
    id: str
    ownerId: str
    topicId: str
    courseId: str
    title: str
    bodyText: str
    createdAt: Optional[datetime] = None


class Solution(BaseModel):
    id: str
    ownerId: str
    questionId: str
    kind: SolutionKind = "text"
    content: str
    createdAt: Optional[datetime] = None


class QuestionSnapshot(BaseModel):
    title: str
    bodyText: str


class SolutionSnapshot(BaseModel):
    kind: SolutionKind = "text"
    content: str
    createdAt: Optional[datetime] = None


class SharedProblem(BaseModel):
    """Point-to-point share. Immutable apart from ``status``."""

    id: str
    questionId: str
    questionData: QuestionSnapshot
    solutions: List[SolutionSnapshot] = Field(default_factory=list)
    senderId: str
    senderUsername: str
    senderEmail: str
    recipientId: str
    recipientUsername: Optional[str] = None
    courseContext: Optional[str] = None
    topicContext: Optional[str] = None
    status: ShareStatus = "pending"
    createdAt: Optional[datetime] = None


class GroupMember(BaseModel):
    userId: str
    username: str
    email: str
    joinedAt: Optional[datetime] = None


class Group(BaseModel):
    id: str
    name: str
    creatorId: str
    creatorUsername: str
    inviteCode: str
    members: List[GroupMember] = Field(default_factory=list)
    createdAt: Optional[datetime] = None

    def has_member(self, user_id: str) -> bool:
        return self.creatorId == user_id or any(m.userId == user_id for m in self.members)


class GroupSharedCourse(BaseModel):
    """Pointer into the sharer's personal store; nothing is copied."""

    id: str
    groupId: str
    courseId: str
    courseName: str
    sharedBy: str
    sharedByUsername: str
    sharedAt: Optional[datetime] = None


class ProblemWithSolutions(Question):
    topicName: str
    solutions: List[Solution] = Field(default_factory=list)
