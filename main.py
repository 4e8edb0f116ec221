import asyncio
import logging
import os
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr

from config import SETTINGS
from database import COURSES, QUESTIONS, SOLUTIONS, TOPICS
from errors import AuthError, DevStudyError, NotFoundError, TransientStoreError, ValidationError
from identity import IdentityProviderError, translate_auth_error
from log_config import setup_logging
from schemas import (
    Course,
    Group,
    GroupSharedCourse,
    ProblemWithSolutions,
    Profile,
    Question,
    SharedProblem,
    Solution,
    Topic,
    User,
)
from services import Services

setup_logging(SETTINGS.log_level)
logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


@lru_cache
def get_services() -> Services:
    return Services.from_settings(SETTINGS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = app.dependency_overrides.get(get_services, get_services)()
    try:
        await asyncio.to_thread(services.store.ensure_indexes)
    except TransientStoreError:
        logger.exception("Could not create indexes at startup; the store may be unreachable")
    yield


app = FastAPI(title="DevStudy API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=SETTINGS.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DevStudyError)
async def devstudy_error_handler(request: Request, exc: DevStudyError):
    content: Dict[str, Any] = {"detail": exc.message}
    headers = None
    if isinstance(exc, TransientStoreError):
        content["retryable"] = True
    if isinstance(exc, AuthError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(IdentityProviderError)
async def identity_error_handler(request: Request, exc: IdentityProviderError):
    logger.info("Identity provider rejected request: %s", exc.code)
    return await devstudy_error_handler(request, translate_auth_error(exc))


# ----------------------- Request models -----------------------
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserCreate(BaseModel):
    email: EmailStr
    password: str


class ProfileCreate(BaseModel):
    username: str


class CourseCreate(BaseModel):
    name: str
    colorTheme: Optional[str] = None
    iconName: Optional[str] = None


class TopicCreate(BaseModel):
    name: str


class QuestionCreate(BaseModel):
    title: str
    bodyText: str


class SolutionCreate(BaseModel):
    kind: str = "text"
    content: str


class ShareCreate(BaseModel):
    recipientId: str


class GroupCreate(BaseModel):
    name: str
    memberIds: List[str]


class JoinRequest(BaseModel):
    inviteCode: str


class MemberAdd(BaseModel):
    userId: str


class GroupCourseCreate(BaseModel):
    courseId: str


# ----------------------- Dependencies -----------------------
def get_current_user(token: str = Depends(oauth2_scheme), services: Services = Depends(get_services)) -> User:
    return services.identity.verify_token(token)


def get_current_profile(user: User = Depends(get_current_user),
                        services: Services = Depends(get_services)) -> Profile:
    profile = services.profiles.get_profile(user.id)
    if profile is None:
        raise NotFoundError("Profile not set up. Choose a username first.")
    return profile


def require_confirmation(confirm: bool = False) -> None:
    """Destructive endpoints run only when the client confirmed with ?confirm=true."""
    if not confirm:
        raise ValidationError("This cannot be undone. Repeat the request with confirm=true.")


# ----------------------- Basic routes -----------------------
@app.get("/")
def root():
    return {"message": "DevStudy API is running"}


@app.get("/test")
def test_database(services: Services = Depends(get_services)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        response["collections"] = services.store.ping()[:10]
        response["database"] = "✅ Connected"
        response["connection_status"] = "Connected"
    except TransientStoreError as e:
        response["database"] = f"⚠️ {e.message[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/api/auth/signup", response_model=User)
def signup(payload: UserCreate, services: Services = Depends(get_services)):
    return services.identity.sign_up(payload.email, payload.password)


@app.post("/api/auth/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), services: Services = Depends(get_services)):
    user = services.identity.sign_in(form_data.username, form_data.password)
    return {"access_token": services.identity.issue_token(user), "token_type": "bearer"}


@app.post("/api/auth/logout")
def logout(token: str = Depends(oauth2_scheme), services: Services = Depends(get_services)):
    services.identity.sign_out(token)
    return {"signedOut": True}


@app.get("/api/auth/me")
def me(current_user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    profile = services.profiles.get_profile(current_user.id)
    return {"id": current_user.id, "email": current_user.email, "profile": profile}


# ----------------------- Profiles -----------------------
@app.get("/api/profile", response_model=Profile)
def get_profile(profile: Profile = Depends(get_current_profile)):
    return profile


@app.post("/api/profile", response_model=Profile)
def create_profile(payload: ProfileCreate, current_user: User = Depends(get_current_user),
                   services: Services = Depends(get_services)):
    return services.profiles.create_profile(current_user.id, current_user.email, payload.username)


@app.get("/api/profile/stats")
def profile_stats(current_user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    uid = current_user.id
    return {
        "courses": services.store.count(COURSES, {"ownerId": uid}),
        "questions": services.store.count(QUESTIONS, {"ownerId": uid}),
        "solutions": services.store.count(SOLUTIONS, {"ownerId": uid}),
        "groups": services.groups.count_groups_for_user(uid),
        "unread": services.sharing.count_unread(uid),
    }


@app.get("/api/profiles/search", response_model=List[Profile])
def search_profiles(q: str = "", current_user: User = Depends(get_current_user),
                    services: Services = Depends(get_services)):
    return services.profiles.search_profiles(q, exclude_user_id=current_user.id)


# ----------------------- Courses & Topics -----------------------
@app.get("/api/courses", response_model=List[Course])
def list_courses(current_user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.content.courses(current_user.id)


@app.post("/api/courses", response_model=Course)
def create_course(payload: CourseCreate, current_user: User = Depends(get_current_user),
                  services: Services = Depends(get_services)):
    return services.content.create_course(current_user.id, payload.name, payload.colorTheme, payload.iconName)


@app.get("/api/courses/{course_id}", response_model=Course)
def get_course(course_id: str, current_user: User = Depends(get_current_user),
               services: Services = Depends(get_services)):
    return services.content.course(current_user.id, course_id)


@app.delete("/api/courses/{course_id}", dependencies=[Depends(require_confirmation)])
def delete_course(course_id: str, current_user: User = Depends(get_current_user),
                  services: Services = Depends(get_services)):
    return _deleted(services.content.delete(current_user.id, COURSES, course_id), "Course")


@app.get("/api/courses/{course_id}/topics", response_model=List[Topic])
def list_topics(course_id: str, current_user: User = Depends(get_current_user),
                services: Services = Depends(get_services)):
    return services.content.topics(current_user.id, course_id)


@app.post("/api/courses/{course_id}/topics", response_model=Topic)
def create_topic(course_id: str, payload: TopicCreate, current_user: User = Depends(get_current_user),
                 services: Services = Depends(get_services)):
    return services.content.create_topic(current_user.id, course_id, payload.name)


@app.get("/api/topics/{topic_id}", response_model=Topic)
def get_topic(topic_id: str, current_user: User = Depends(get_current_user),
              services: Services = Depends(get_services)):
    return services.content.topic(current_user.id, topic_id)


@app.delete("/api/topics/{topic_id}", dependencies=[Depends(require_confirmation)])
def delete_topic(topic_id: str, current_user: User = Depends(get_current_user),
                 services: Services = Depends(get_services)):
    return _deleted(services.content.delete(current_user.id, TOPICS, topic_id), "Topic")


# ----------------------- Questions & Solutions -----------------------
@app.get("/api/topics/{topic_id}/questions", response_model=List[Question])
def list_questions(topic_id: str, current_user: User = Depends(get_current_user),
                   services: Services = Depends(get_services)):
    return services.content.questions(current_user.id, topic_id)


@app.post("/api/topics/{topic_id}/questions", response_model=Question)
def create_question(topic_id: str, payload: QuestionCreate, current_user: User = Depends(get_current_user),
                    services: Services = Depends(get_services)):
    return services.content.create_question(current_user.id, topic_id, payload.title, payload.bodyText)


@app.get("/api/questions/{question_id}", response_model=Question)
def get_question(question_id: str, current_user: User = Depends(get_current_user),
                 services: Services = Depends(get_services)):
    return services.content.question(current_user.id, question_id)


@app.delete("/api/questions/{question_id}", dependencies=[Depends(require_confirmation)])
def delete_question(question_id: str, current_user: User = Depends(get_current_user),
                    services: Services = Depends(get_services)):
    return _deleted(services.content.delete(current_user.id, QUESTIONS, question_id), "Question")


@app.get("/api/questions/{question_id}/solutions", response_model=List[Solution])
def list_solutions(question_id: str, current_user: User = Depends(get_current_user),
                   services: Services = Depends(get_services)):
    return services.content.solutions(current_user.id, question_id)


@app.post("/api/questions/{question_id}/solutions", response_model=Solution)
def create_solution(question_id: str, payload: SolutionCreate, current_user: User = Depends(get_current_user),
                    services: Services = Depends(get_services)):
    return services.content.create_solution(current_user.id, question_id, payload.kind, payload.content)


@app.delete("/api/solutions/{solution_id}", dependencies=[Depends(require_confirmation)])
def delete_solution(solution_id: str, current_user: User = Depends(get_current_user),
                    services: Services = Depends(get_services)):
    return _deleted(services.content.delete(current_user.id, SOLUTIONS, solution_id), "Solution")


def _deleted(deleted: bool, label: str) -> Dict[str, bool]:
    if not deleted:
        raise NotFoundError(f"{label} not found")
    return {"deleted": True}


# ----------------------- Shared problems -----------------------
@app.post("/api/questions/{question_id}/share", response_model=SharedProblem)
def share_question(question_id: str, payload: ShareCreate, profile: Profile = Depends(get_current_profile),
                   services: Services = Depends(get_services)):
    return services.sharing.share_question(profile, question_id, payload.recipientId)


@app.get("/api/shares", response_model=List[SharedProblem])
def inbox(current_user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.sharing.list_inbox(current_user.id)


@app.get("/api/shares/unread")
def unread_count(current_user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return {"unread": services.sharing.count_unread(current_user.id)}


@app.get("/api/shares/{share_id}", response_model=SharedProblem)
def open_share(share_id: str, current_user: User = Depends(get_current_user),
               services: Services = Depends(get_services)):
    return services.sharing.open_share(share_id, current_user.id)


@app.post("/api/shares/{share_id}/viewed", response_model=SharedProblem)
def mark_share_viewed(share_id: str, current_user: User = Depends(get_current_user),
                      services: Services = Depends(get_services)):
    return services.sharing.open_share(share_id, current_user.id)


@app.websocket("/api/shares/unread/live")
async def unread_live(websocket: WebSocket, token: str = Query(...), services: Services = Depends(get_services)):
    try:
        user = await asyncio.to_thread(services.identity.verify_token, token)
    except IdentityProviderError as e:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=translate_auth_error(e).message)
        return
    await websocket.accept()

    loop = asyncio.get_running_loop()
    counts: asyncio.Queue = asyncio.Queue()
    subscription = await asyncio.to_thread(
        services.sharing.watch_unread, user.id, lambda n: loop.call_soon_threadsafe(counts.put_nowait, n)
    )
    receiver = asyncio.ensure_future(websocket.receive_text())
    try:
        while True:
            getter = asyncio.ensure_future(counts.get())
            done, _ = await asyncio.wait({receiver, getter}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                if receiver.exception() is not None:
                    getter.cancel()
                    break
                # Clients have nothing to say on this feed; keep listening for the close.
                receiver = asyncio.ensure_future(websocket.receive_text())
            if getter in done:
                await websocket.send_json({"unread": getter.result()})
            else:
                getter.cancel()
    except WebSocketDisconnect:
        pass
    finally:
        subscription.unsubscribe()
        receiver.cancel()


# ----------------------- Groups -----------------------
@app.get("/api/groups", response_model=List[Group])
def list_groups(current_user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.groups.list_groups_for_user(current_user.id)


@app.post("/api/groups", response_model=Group)
def create_group(payload: GroupCreate, profile: Profile = Depends(get_current_profile),
                 services: Services = Depends(get_services)):
    members = []
    for user_id in payload.memberIds:
        member = services.profiles.get_profile(user_id)
        if member is None:
            raise NotFoundError(f"User {user_id} not found")
        members.append(member)
    return services.groups.create_group(payload.name, members, profile)


@app.post("/api/groups/join", response_model=Group)
def join_group(payload: JoinRequest, profile: Profile = Depends(get_current_profile),
               services: Services = Depends(get_services)):
    return services.groups.join_by_code(payload.inviteCode, profile)


@app.get("/api/groups/{group_id}", response_model=Group)
def get_group(group_id: str, current_user: User = Depends(get_current_user),
              services: Services = Depends(get_services)):
    return services.groups.require_member(group_id, current_user.id)


@app.delete("/api/groups/{group_id}", dependencies=[Depends(require_confirmation)])
def delete_group(group_id: str, current_user: User = Depends(get_current_user),
                 services: Services = Depends(get_services)):
    services.groups.delete_group(group_id, actor_id=current_user.id)
    return {"deleted": True}


@app.post("/api/groups/{group_id}/members", response_model=Group)
def add_group_member(group_id: str, payload: MemberAdd, current_user: User = Depends(get_current_user),
                     services: Services = Depends(get_services)):
    member = services.profiles.get_profile(payload.userId)
    if member is None:
        raise NotFoundError("User not found")
    return services.groups.add_member(group_id, member, actor_id=current_user.id)


@app.get("/api/groups/{group_id}/courses", response_model=List[GroupSharedCourse])
def list_group_courses(group_id: str, current_user: User = Depends(get_current_user),
                       services: Services = Depends(get_services)):
    services.groups.require_member(group_id, current_user.id)
    return services.aggregation.list_group_courses(group_id)


@app.post("/api/groups/{group_id}/courses", response_model=GroupSharedCourse)
def share_course(group_id: str, payload: GroupCourseCreate, profile: Profile = Depends(get_current_profile),
                 services: Services = Depends(get_services)):
    course = services.content.course(profile.userId, payload.courseId)
    return services.aggregation.share_course_to_group(group_id, course.id, course.name, profile)


@app.get("/api/groups/{group_id}/courses/{share_id}/problems", response_model=List[ProblemWithSolutions])
async def group_course_problems(group_id: str, share_id: str, current_user: User = Depends(get_current_user),
                                services: Services = Depends(get_services)):
    pointer = await asyncio.to_thread(services.aggregation.get_pointer, share_id)
    if pointer.groupId != group_id:
        raise NotFoundError("Shared course not found")
    return await services.aggregation.get_group_course_problems(share_id, current_user.id)


def run():
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=SETTINGS.port)


if __name__ == "__main__":
    run()
