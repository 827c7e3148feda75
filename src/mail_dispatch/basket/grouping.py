"""Group basket items by information source and render their export text."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping

from mail_dispatch.core.models import (
    CaseInfo,
    InformationSource,
    ItemKind,
    MailableItem,
    SourceGroup,
)

UNASSIGNED_NAME = "Unassigned"


def _source_lookup(
    sources: Mapping[int, InformationSource] | Iterable[InformationSource],
) -> Mapping[int, InformationSource]:
    if isinstance(sources, Mapping):
        return sources
    return {source.id: source for source in sources}


def source_name(
    source_id: int | None, sources: Mapping[int, InformationSource]
) -> str:
    """Display name for a source id, including the unassigned sentinel."""
    if source_id is None:
        return UNASSIGNED_NAME
    source = sources.get(source_id)
    return source.name if source else f"Source #{source_id}"


def _title_suffix(item: MailableItem) -> str:
    title = item.mail_title
    return f" - {title}" if title else ""


def _number_prefix(item: MailableItem) -> str:
    if item.document_number is None:
        return ""
    # Half-up rounding; group numbers arrive as decimals such as 2.0.
    group_nr = math.floor((item.group_number or 0) + 0.5)
    return f"{group_nr}.{item.document_number} "


def activity_line(item: MailableItem) -> str:
    """Export line for an activity: ``- <label>[ - <title>]``."""
    return f"- {item.label}{_title_suffix(item)}"


def document_line(item: MailableItem) -> str:
    """Export line for a document: ``- <g>.<d> <name>[ - <title>]``."""
    return f"- {_number_prefix(item)}{item.label}{_title_suffix(item)}"


def _section_lines(
    activities: Iterable[MailableItem],
    documents: Iterable[MailableItem],
    *,
    headings: bool,
) -> list[str]:
    activity_lines = [activity_line(item) for item in activities]
    document_lines = [document_line(item) for item in documents]
    lines: list[str] = []
    if activity_lines:
        if headings:
            lines.append("Activities:")
        lines.extend(activity_lines)
    if activity_lines and document_lines:
        lines.append("")
    if document_lines:
        if headings:
            lines.append("Documents:")
        lines.extend(document_lines)
    return lines


def export_text(
    activities: Iterable[MailableItem], documents: Iterable[MailableItem]
) -> str:
    """Return the plain task-list text for a group's items."""
    lines = _section_lines(activities, documents, headings=False)
    return "\n".join(lines) + "\n" if lines else ""


def group_items(
    items: Iterable[MailableItem],
    sources: Mapping[int, InformationSource] | Iterable[InformationSource] = (),
) -> list[SourceGroup]:
    """Group ``items`` by source.

    Groups are sorted by source name, case-insensitively, with the unassigned
    group last. Items keep their input order inside a group, so the same input
    always yields the same groups and text.
    """
    lookup = _source_lookup(sources)
    buckets: dict[int | None, tuple[list[MailableItem], list[MailableItem]]] = {}
    for item in items:
        activities, documents = buckets.setdefault(item.source_id, ([], []))
        if item.kind is ItemKind.ACTIVITY:
            activities.append(item)
        else:
            documents.append(item)

    groups = [
        SourceGroup(
            source_id=source_id,
            name=source_name(source_id, lookup),
            activities=tuple(activities),
            documents=tuple(documents),
            export_text=export_text(activities, documents),
        )
        for source_id, (activities, documents) in buckets.items()
    ]
    groups.sort(
        key=lambda group: (
            group.is_unassigned,
            group.name.casefold(),
            group.name,
            group.source_id or 0,
        )
    )
    return groups


def clipboard_text(case: CaseInfo, group: SourceGroup) -> str:
    """Return the copy-to-clipboard text for one group, headed by the case."""
    lines = [f"Re: case {case.case_number} - {case.alias or ''}".rstrip()]
    if case.address:
        lines.append(case.address)
    lines.append("")
    lines.append(f"--- {group.name} ---")
    lines.extend(_section_lines(group.activities, group.documents, headings=True))
    return "\n".join(lines) + "\n"


__all__ = [
    "UNASSIGNED_NAME",
    "activity_line",
    "clipboard_text",
    "document_line",
    "export_text",
    "group_items",
    "source_name",
]
