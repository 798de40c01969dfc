"""Plain-text overview of the published content."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable

from ..services.storage import BatchNode, ContentRepository, LectureRecord, SubjectNode


@dataclass
class ConsoleSection:
    title: str
    entries: Iterable[str]


class ConsoleUI:
    """Print the batch/subject/chapter/lecture tree and live classes."""

    def __init__(self, repository: ContentRepository, *, echo: Callable[[str], None] = print) -> None:
        self._repository = repository
        self._echo = echo

    def run(self) -> None:
        self._echo("Study Portal – Console Overview")
        self._echo("=" * 40)
        for section in self._build_sections():
            self._echo(section.title)
            self._echo("-" * len(section.title))
            has_entries = False
            for entry in section.entries:
                has_entries = True
                self._echo(entry)
            if not has_entries:
                self._echo("(empty)")
            self._echo("")

    def _build_sections(self) -> Iterable[ConsoleSection]:
        for node in self._repository.load_tree():
            yield ConsoleSection(
                title=f"Batch: {node.batch.name}",
                entries=self._format_subjects(node),
            )
        yield ConsoleSection(title="Live classes", entries=self._format_live_classes())

    def _format_subjects(self, node: BatchNode) -> Iterable[str]:
        if not node.subjects:
            yield "  No subjects registered"
            return
        for subject in node.subjects:
            yield from self._format_subject_details(subject)

    def _format_subject_details(self, node: SubjectNode) -> Iterable[str]:
        header = f"  Subject: {node.subject.name}"
        if not node.chapters:
            yield f"{header} (no chapters)"
            return
        yield header
        for chapter in node.chapters:
            yield f"    Chapter {chapter.chapter.order_index}: {chapter.chapter.title}"
            for lecture in chapter.lectures:
                yield f"      Lecture: {lecture.title}" + self._format_lecture_meta(lecture)

    def _format_live_classes(self) -> Iterable[str]:
        for item in self._repository.list_live_classes():
            yield f"  {item.scheduled_at}  {item.title} [{item.status}]"

    @staticmethod
    def _format_lecture_meta(lecture: LectureRecord) -> str:
        parts = [lecture.video_type]
        if lecture.notes_url:
            parts.append("notes")
        if lecture.dpp_url:
            parts.append("dpp")
        return " (" + ", ".join(parts) + ")"


__all__ = ["ConsoleUI"]
