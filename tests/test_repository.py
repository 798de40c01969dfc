from __future__ import annotations

import pytest

from portal.services.storage import ContentRepository, IntegrityViolation


def test_repository_crud_cycle(repository: ContentRepository) -> None:
    batch_id = repository.add_batch("JEE 2026", "Full syllabus")
    subject_id = repository.add_subject(batch_id, "Physics")
    chapter_id = repository.add_chapter(subject_id, "Kinematics")
    lecture_id = repository.add_lecture(
        chapter_id,
        "Motion in a line",
        "https://youtu.be/abc",
        notes_url="https://example.com/notes.pdf",
        uploaded_by="admin@example.com",
    )

    lecture = repository.get_lecture(lecture_id)
    assert lecture is not None
    assert lecture.video_type == "youtube"
    assert lecture.notes_url == "https://example.com/notes.pdf"
    assert lecture.dpp_url is None

    subject = repository.get_subject(subject_id)
    assert subject is not None and subject.color == "bg-blue-500"

    assert repository.remove_lecture(lecture_id) is True
    assert repository.get_lecture(lecture_id) is None
    assert repository.remove_lecture(lecture_id) is False


def test_chapter_order_index_increments_per_subject(repository: ContentRepository) -> None:
    batch_id = repository.add_batch("NEET")
    biology = repository.add_subject(batch_id, "Biology")
    chemistry = repository.add_subject(batch_id, "Chemistry")

    first = repository.add_chapter(biology, "Cells")
    second = repository.add_chapter(biology, "Genetics")
    other = repository.add_chapter(chemistry, "Atoms")

    assert repository.get_chapter(first).order_index == 1
    assert repository.get_chapter(second).order_index == 2
    assert repository.get_chapter(other).order_index == 1


def test_deleting_batch_cascades(repository: ContentRepository) -> None:
    batch_id = repository.add_batch("Foundation")
    subject_id = repository.add_subject(batch_id, "Maths")
    chapter_id = repository.add_chapter(subject_id, "Algebra")
    repository.add_lecture(chapter_id, "Equations", "https://cdn.example.com/v.mp4", video_type="direct")
    repository.add_live_class(
        title="Doubt session",
        batch_id=batch_id,
        subject_id=subject_id,
        chapter_id=chapter_id,
        scheduled_at="2026-01-01T10:00:00",
        live_url="https://meet.example.com/x",
    )

    assert repository.remove_batch(batch_id) is True
    assert repository.list_subjects() == []
    assert repository.list_chapters() == []
    assert repository.list_lectures() == []
    assert repository.list_live_classes() == []


def test_load_tree_nests_content(repository: ContentRepository) -> None:
    older = repository.add_batch("Older")
    newer = repository.add_batch("Newer")
    subject_id = repository.add_subject(older, "History")
    chapter_id = repository.add_chapter(subject_id, "Ancient")
    repository.add_lecture(chapter_id, "Harappa", "https://youtu.be/h")

    tree = repository.load_tree()

    assert [node.batch.id for node in tree] == [newer, older]
    older_node = tree[1]
    assert older_node.subjects[0].subject.name == "History"
    assert older_node.subjects[0].chapters[0].lectures[0].title == "Harappa"
    assert tree[0].subjects == ()


def test_live_classes_are_ordered_by_schedule(repository: ContentRepository) -> None:
    batch_id = repository.add_batch("Batch")
    subject_id = repository.add_subject(batch_id, "Subject")
    chapter_id = repository.add_chapter(subject_id, "Chapter")
    common = dict(batch_id=batch_id, subject_id=subject_id, chapter_id=chapter_id, live_url="u")
    late = repository.add_live_class(title="Late", scheduled_at="2026-03-01T09:00:00", **common)
    early = repository.add_live_class(title="Early", scheduled_at="2026-02-01T09:00:00", **common)

    assert [item.id for item in repository.list_live_classes()] == [early, late]

    assert repository.update_live_class_status(late, "live") is True
    assert repository.get_live_class(late).status == "live"
    with pytest.raises(ValueError):
        repository.update_live_class_status(late, "cancelled")


def test_unknown_parent_is_an_integrity_violation(repository: ContentRepository) -> None:
    with pytest.raises(IntegrityViolation):
        repository.add_subject(999, "Orphan")


def test_duplicate_user_email_is_rejected(repository: ContentRepository) -> None:
    repository.add_user("a@example.com", "admin", "hash", assigned_batches=[1, 2])
    with pytest.raises(IntegrityViolation):
        repository.add_user("a@example.com", "uploader", "hash")

    record = repository.find_user_by_email("a@example.com")
    assert record is not None
    assert record.assigned_batches == [1, 2]


def test_settings_upsert_keeps_last_write(repository: ContentRepository) -> None:
    assert repository.get_setting("monetization") is None

    repository.put_setting("monetization", {"access_duration": 3600})
    repository.put_setting("monetization", {"access_duration": 86400})

    assert repository.get_setting("monetization") == {"access_duration": 86400}


def test_repository_emits_db_events(repository: ContentRepository) -> None:
    events = []
    repository.configure_event_emitter(
        lambda event_type, message, **kwargs: events.append((event_type, message, kwargs))
    )

    repository.add_batch("Observed")

    actions = [message for _, message, _ in events]
    assert "add_batch" in actions
    add_event = next(kwargs for _, message, kwargs in events if message == "add_batch")
    assert add_event["payload"]["status"] == "ok"
    assert add_event["duration_ms"] >= 0
