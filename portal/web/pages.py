"""HTML rendering for the public pages and the key generation flow."""

from __future__ import annotations

import html
from pathlib import Path
from typing import Dict, Iterable, Optional

from ..services.settings import GateConfig
from ..services.state import ContentSnapshot
from ..services.storage import BatchNode, ChapterNode, LectureRecord, LiveClassRecord, SubjectNode


_TEMPLATE_PATH = Path(__file__).parent / "templates" / "base.html"

SERVER_REDIRECT_DELAY_SECONDS = 3
ADS_REDIRECT_DELAY_SECONDS = 2


def _esc(value: object) -> str:
    return html.escape(str(value), quote=True)


def load_template() -> str:
    return _TEMPLATE_PATH.read_text(encoding="utf-8")


def render_document(
    template: str,
    title: str,
    body: str,
    *,
    root_path: str = "",
    head: str = "",
    refresh: Optional[tuple[int, str]] = None,
) -> str:
    refresh_tag = ""
    if refresh is not None:
        delay, target = refresh
        refresh_tag = f'<meta http-equiv="refresh" content="{int(delay)};url={_esc(target)}" />'
    return (
        template.replace("__PORTAL_STATIC__", f"{root_path}/static")
        .replace("__PORTAL_ROOT__", root_path)
        .replace("__PORTAL_REFRESH__", refresh_tag)
        .replace("__PORTAL_TITLE__", _esc(title))
        .replace("__PORTAL_HEAD__", head)
        .replace("__PORTAL_BODY__", body)
    )


def _batch_card(node: BatchNode, root_path: str) -> str:
    batch = node.batch
    lecture_total = sum(
        len(chapter.lectures) for subject in node.subjects for chapter in subject.chapters
    )
    description = f"<p>{_esc(batch.description)}</p>" if batch.description else ""
    return (
        '<article class="card">'
        f'<h2><a href="{root_path}/batch/{batch.id}">{_esc(batch.name)}</a></h2>'
        f"{description}"
        f"<p>{len(node.subjects)} subjects · {lecture_total} lectures</p>"
        "</article>"
    )


def render_home(snapshot: ContentSnapshot, *, root_path: str = "") -> str:
    upcoming = [item for item in snapshot.live_classes if item.status != "completed"]
    parts = ["<h1>Welcome</h1>"]
    if snapshot.batches:
        parts.append("<h2>Latest batches</h2>")
        parts.extend(_batch_card(node, root_path) for node in snapshot.batches[:3])
    else:
        parts.append('<p class="empty">No batches published yet.</p>')
    if upcoming:
        parts.append(f'<p><a href="{root_path}/live-classes">{len(upcoming)} upcoming live classes</a></p>')
    return "".join(parts)


def render_batches(snapshot: ContentSnapshot, *, root_path: str = "") -> str:
    if not snapshot.batches:
        return '<h1>Batches</h1><p class="empty">No batches published yet.</p>'
    cards = "".join(_batch_card(node, root_path) for node in snapshot.batches)
    return f"<h1>Batches</h1>{cards}"


def _lecture_item(lecture: LectureRecord) -> str:
    links = [f'<a href="{_esc(lecture.video_url)}">Watch</a>']
    if lecture.notes_url:
        links.append(f'<a href="{_esc(lecture.notes_url)}">Notes</a>')
    if lecture.dpp_url:
        links.append(f'<a href="{_esc(lecture.dpp_url)}">DPP</a>')
    return f"<li>{_esc(lecture.title)} ({_esc(lecture.video_type)}) {' · '.join(links)}</li>"


def _chapter_block(node: ChapterNode) -> str:
    chapter = node.chapter
    if node.lectures:
        items = "".join(_lecture_item(lecture) for lecture in node.lectures)
        lectures = f"<ul>{items}</ul>"
    else:
        lectures = '<p class="empty">No lectures yet.</p>'
    return f"<section><h4>{chapter.order_index}. {_esc(chapter.title)}</h4>{lectures}</section>"


def _subject_block(node: SubjectNode) -> str:
    subject = node.subject
    chapters = "".join(_chapter_block(chapter) for chapter in node.chapters)
    if not chapters:
        chapters = '<p class="empty">No chapters yet.</p>'
    return (
        '<div class="card">'
        f'<h3><span class="badge {_esc(subject.color)}">{_esc(subject.name)}</span></h3>'
        f"{chapters}"
        "</div>"
    )


def render_batch(node: BatchNode) -> str:
    batch = node.batch
    subjects = "".join(_subject_block(subject) for subject in node.subjects)
    if not subjects:
        subjects = '<p class="empty">No subjects yet.</p>'
    description = f"<p>{_esc(batch.description)}</p>" if batch.description else ""
    return f"<h1>{_esc(batch.name)}</h1>{description}{subjects}"


def render_live_classes(
    live_classes: Iterable[LiveClassRecord],
    batch_names: Dict[int, str],
) -> str:
    rows = []
    for item in live_classes:
        batch_name = batch_names.get(item.batch_id, "Unknown batch")
        join = (
            f' <a href="{_esc(item.live_url)}">Join</a>' if item.status == "live" else ""
        )
        rows.append(
            '<article class="card">'
            f'<h3>{_esc(item.title)} <span class="badge status-{_esc(item.status)}">'
            f"{_esc(item.status)}</span></h3>"
            f"<p>{_esc(batch_name)} · {_esc(item.scheduled_at)}{join}</p>"
            "</article>"
        )
    if not rows:
        return '<h1>Live classes</h1><p class="empty">No live classes scheduled.</p>'
    return "<h1>Live classes</h1>" + "".join(rows)


def render_not_found(what: str, *, root_path: str = "") -> str:
    return f'<h1>{_esc(what)} not found</h1><p><a href="{root_path}/batches">Back to batches</a></p>'


def render_key_generation(settings: GateConfig, *, root_path: str = "") -> str:
    return (
        '<div class="card">'
        "<h1>Get access</h1>"
        f"<p>Access is granted for {_esc(settings.duration_label)}.</p>"
        '<div class="choices">'
        f'<a href="{root_path}/key-generation/server/1">Server 1</a>'
        f'<a href="{root_path}/key-generation/server/2">Server 2</a>'
        f'<a class="ads" href="{root_path}/key-generation/ads">Continue with ads</a>'
        "</div>"
        "</div>"
    )


def render_server_redirect(server: int, original_url: str, target: str) -> str:
    return (
        '<div class="card">'
        f"<h1>Server {int(server)}</h1>"
        f'<p>Original link: <code>{_esc(original_url)}</code></p>'
        f"<p>Redirecting in {SERVER_REDIRECT_DELAY_SECONDS} seconds. "
        f'<a href="{_esc(target)}">Continue now</a></p>'
        "</div>"
    )


def render_ads_redirect(duration_label: str, target: str) -> str:
    return (
        '<div class="card">'
        "<h1>Ads enabled</h1>"
        f"<p>You have access for {_esc(duration_label)}. "
        f'Redirecting in {ADS_REDIRECT_DELAY_SECONDS} seconds. <a href="{_esc(target)}">Continue now</a></p>'
        "</div>"
    )


__all__ = [
    "ADS_REDIRECT_DELAY_SECONDS",
    "SERVER_REDIRECT_DELAY_SECONDS",
    "load_template",
    "render_ads_redirect",
    "render_batch",
    "render_batches",
    "render_document",
    "render_home",
    "render_key_generation",
    "render_live_classes",
    "render_not_found",
    "render_server_redirect",
]
