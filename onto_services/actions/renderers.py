"""Markdown bodies for documents generated by transition actions."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from onto_kernel.domain.transition import EntitySnapshot
from onto_kernel.utils.freezing import thaw

CAMPAIGN_REPORT = "doc.campaign_report"
PROJECT_BRIEF = "doc.brief"
RESEARCH_NOTES = "doc.notes"

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_.]*)\s*\}\}")


def build_render_context(
    snapshot: EntitySnapshot,
    variables: Mapping[str, Any],
) -> dict[str, Any]:
    """Values templates may reference; ``variables`` also appear top-level."""
    variables = thaw(variables)
    context: dict[str, Any] = {
        "entity_name": snapshot.display_name or variables.get("entity_name") or "Entity",
        "entity_type": snapshot.type_key,
        "state": snapshot.state_key,
        "project_id": snapshot.project_id,
        "props": thaw(snapshot.props),
        "variables": variables,
    }
    context.update(variables)
    return context


def render_text(template: str, context: Mapping[str, Any]) -> str:
    """Replace ``{{name}}`` / ``{{props.x}}`` placeholders; unknown ones render empty."""

    def _lookup(match: re.Match) -> str:
        value: Any = context
        for part in match.group(1).split("."):
            value = value.get(part) if isinstance(value, Mapping) else None
        return "" if value is None else str(value)

    return _PLACEHOLDER_RE.sub(_lookup, template)


def _name(context: Mapping[str, Any], fallback: str) -> str:
    name = context.get("entity_name")
    return name if isinstance(name, str) and name else fallback


def render_campaign_report(snapshot: EntitySnapshot, context: Mapping[str, Any]) -> str:
    props = context.get("props") or {}
    variables = context.get("variables") or {}
    metrics = props.get("performance_metrics") or {}
    start = props.get("start_date") or variables.get("start_date") or "Unknown"
    end = props.get("end_date") or variables.get("end_date") or "Unknown"
    goal = props.get("campaign_goal") or variables.get("campaign_goal") or "N/A"
    budget = props.get("budget", variables.get("budget", 0))
    channels = props.get("channels") if isinstance(props.get("channels"), list) else []

    return "\n".join([
        "# Campaign Performance Report",
        f"## Campaign: {variables.get('campaign_name') or _name(context, 'Campaign')}",
        "",
        "### Overview",
        f"- **Goal**: {goal}",
        f"- **Duration**: {start} to {end}",
        f"- **Budget**: ${budget}",
        f"- **Channels**: {', '.join(map(str, channels)) if channels else 'Not specified'}",
        "",
        "### Performance Metrics",
        f"- **Impressions**: {metrics.get('impressions', 0)}",
        f"- **Clicks**: {metrics.get('clicks', 0)}",
        f"- **Conversions**: {metrics.get('conversions', 0)}",
        f"- **ROI**: {metrics.get('roi', 0)}%",
        "",
        "### Key Learnings",
        "- Placeholder for campaign insights",
        "",
        "### Recommendations",
        "- Placeholder for next steps",
    ])


def render_project_brief(snapshot: EntitySnapshot, context: Mapping[str, Any]) -> str:
    props = context.get("props") or {}
    variables = context.get("variables") or {}
    summary = (
        variables.get("summary")
        or props.get("summary")
        or "Provide a concise description of the project objectives and desired outcomes."
    )
    stakeholders = props.get("stakeholders")
    deliverables = props.get("deliverables")

    return "\n".join([
        "# Project Brief",
        f"## {_name(context, 'Project')}",
        "",
        "### Summary",
        str(summary),
        "",
        "### Stakeholders",
        ", ".join(map(str, stakeholders)) if isinstance(stakeholders, list) and stakeholders
        else "Not specified",
        "",
        "### Key Deliverables",
        "\n".join(f"- {d}" for d in deliverables) if isinstance(deliverables, list) and deliverables
        else "- Identify key deliverables",
        "",
        "### Milestones",
        "- Outline major milestones and target dates.",
        "",
        "### Risks & Dependencies",
        "- Document known risks and dependencies here.",
    ])


def _source_section(index: int, source: Any) -> str:
    source = source if isinstance(source, Mapping) else {}
    title = source.get("title") if isinstance(source.get("title"), str) else f"Source {index}"
    uri = source.get("uri") if isinstance(source.get("uri"), str) else None
    notes = source.get("notes") if isinstance(source.get("notes"), str) else None
    return "\n".join([
        f"### Source {index}: {title}",
        f"- URL: {uri}" if uri else "- URL: Not provided",
        f"- Notes: {notes}" if notes else "- Notes: Add key insights or takeaways for this source.",
    ])


def render_research_notes(
    snapshot: EntitySnapshot,
    context: Mapping[str, Any],
    generated_at: datetime,
) -> str:
    variables = context.get("variables") or {}
    topic = variables.get("topic")
    if not isinstance(topic, str) or not topic:
        topic = _name(context, "Research Notes")
    sources: Sequence[Any] = variables.get("sources") if isinstance(variables.get("sources"), list) else []
    summary = variables.get("summary") if isinstance(variables.get("summary"), str) else ""

    sections = "\n\n".join(_source_section(i, s) for i, s in enumerate(sources, start=1))
    return "\n".join([
        f"# Research Notes: {topic}",
        f"\n{summary}\n" if summary else "",
        sections if sources else "\nNo sources have been attached yet.\n",
        "",
        "---",
        f"_Generated on {generated_at.isoformat()}_",
    ])


def render_generic(snapshot: EntitySnapshot, context: Mapping[str, Any], template_key: str) -> str:
    return f"# {_name(context, 'Document')}\n\nGenerated from {template_key} for {snapshot.type_key}."


def render_document(
    template_key: str,
    snapshot: EntitySnapshot,
    context: Mapping[str, Any],
    generated_at: datetime,
) -> str:
    """Body for ``template_key``; unknown keys get the generic body."""
    if template_key == CAMPAIGN_REPORT:
        return render_campaign_report(snapshot, context)
    if template_key == PROJECT_BRIEF:
        return render_project_brief(snapshot, context)
    if template_key == RESEARCH_NOTES:
        return render_research_notes(snapshot, context, generated_at)
    return render_generic(snapshot, context, template_key)
