import pytest

from database import COURSES, GROUP_SHARED_COURSES, QUESTIONS, SOLUTIONS, TOPICS
from errors import NotFoundError, ValidationError
from schemas import COLOR_THEMES, ICON_NAMES


def _tree(content, owner="u1"):
    course = content.create_course(owner, "DSA")
    topic = content.create_topic(owner, course.id, "Arrays")
    question = content.create_question(owner, topic.id, "Two Sum", "Find two numbers adding to target")
    solution = content.create_solution(owner, question.id, "code", "def two_sum(nums, target): ...")
    return course, topic, question, solution


def test_create_course_applies_defaults(services) -> None:
    course = services.content.create_course("u1", "  DSA ")
    assert course.name == "DSA"
    assert course.ownerId == "u1"
    assert course.colorTheme == COLOR_THEMES[0]
    assert course.iconName == ICON_NAMES[0]
    assert course.createdAt is not None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"name": "   "},
        {"name": "DSA", "color_theme": "plaid"},
        {"name": "DSA", "icon_name": "Rocket"},
    ],
)
def test_create_course_validation(services, kwargs) -> None:
    with pytest.raises(ValidationError):
        services.content.create_course("u1", **kwargs)
    assert services.content.courses("u1") == []


def test_generic_create_ignores_client_owner_and_timestamp(services) -> None:
    doc = services.content.create("u1", COURSES, {"name": "DSA", "ownerId": "u2", "createdAt": 0})
    assert doc["ownerId"] == "u1"
    assert doc["createdAt"] != 0
    assert services.content.get("u2", COURSES, doc["id"]) is None


def test_list_is_scoped_and_newest_first(services) -> None:
    content = services.content
    course = content.create_course("u1", "DSA")
    for name in ["Arrays", "Graphs", "Trees"]:
        content.create_topic("u1", course.id, name)
    content.create_course("u2", "Other")

    assert [t.name for t in content.topics("u1", course.id)] == ["Trees", "Graphs", "Arrays"]
    assert [c.name for c in content.courses("u1")] == ["DSA"]
    assert content.topics("u2", course.id) == []


def test_children_require_existing_parent_of_same_owner(services) -> None:
    content = services.content
    course = content.create_course("u1", "DSA")
    with pytest.raises(NotFoundError):
        content.create_topic("u2", course.id, "Arrays")
    with pytest.raises(NotFoundError):
        content.create_question("u1", "missing", "Two Sum", "text")
    with pytest.raises(NotFoundError):
        content.create_solution("u1", "missing", "text", "answer")


def test_question_inherits_course_from_topic(services) -> None:
    course, topic, question, _ = _tree(services.content)
    assert question.courseId == course.id
    assert question.topicId == topic.id


def test_solution_validation(services) -> None:
    _, _, question, _ = _tree(services.content)
    with pytest.raises(ValidationError):
        services.content.create_solution("u1", question.id, "video", "x")
    with pytest.raises(ValidationError):
        services.content.create_solution("u1", question.id, "text", "   ")


def test_get_missing_or_malformed_id_is_absent(services) -> None:
    assert services.content.get("u1", COURSES, "nope") is None
    with pytest.raises(NotFoundError):
        services.content.course("u1", "nope")


def test_delete_course_cascades_to_children_and_group_pointers(services) -> None:
    content = services.content
    course, _, _, _ = _tree(content)
    other_course, _, other_question, _ = _tree(content)
    services.store.insert(GROUP_SHARED_COURSES, {"groupId": "g1", "courseId": course.id, "sharedBy": "u1"})

    assert content.delete("u1", COURSES, course.id) is True

    assert content.list("u1", TOPICS, "courseId", course.id) == []
    assert content.list("u1", QUESTIONS, "courseId", course.id) == []
    assert [s["questionId"] for s in content.list("u1", SOLUTIONS)] == [other_question.id]
    assert services.store.find(GROUP_SHARED_COURSES, {"courseId": course.id}) == []
    assert content.course("u1", other_course.id).name == "DSA"


def test_delete_topic_and_question_cascade(services) -> None:
    content = services.content
    _, topic, question, _ = _tree(content)
    extra = content.create_question("u1", topic.id, "Three Sum", "Find three numbers")
    content.create_solution("u1", extra.id, "text", "sort then two pointers")

    assert content.delete("u1", QUESTIONS, question.id) is True
    assert content.solutions("u1", question.id) == []
    assert len(content.solutions("u1", extra.id)) == 1

    assert content.delete("u1", TOPICS, topic.id) is True
    assert content.list("u1", QUESTIONS) == []
    assert content.list("u1", SOLUTIONS) == []


def test_delete_is_owner_scoped(services) -> None:
    course, _, _, _ = _tree(services.content)
    assert services.content.delete("u2", COURSES, course.id) is False
    assert services.content.delete("u1", COURSES, "garbage") is False
    assert services.content.course("u1", course.id).id == course.id


def test_watch_tracks_live_changes(services) -> None:
    content = services.content
    course = content.create_course("u1", "DSA")
    snapshots = []
    subscription = content.watch("u1", TOPICS, "courseId", course.id, snapshots.append)
    topic = content.create_topic("u1", course.id, "Arrays")
    content.delete("u1", TOPICS, topic.id)
    subscription.unsubscribe()

    assert [[t["name"] for t in s] for s in snapshots] == [[], ["Arrays"], []]
