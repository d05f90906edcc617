"""
ShipLog — Per-audience prompt templates.

Each builder returns ``[system, user]`` chat messages. The system
message fixes role and style; the user message carries the change-set
as structured context.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Callable, Literal

from shiplog.models.notes import Audience, StyleConfig
from shiplog.models.release import ChangeSet


@dataclass(frozen=True)
class ChatMessage:
    role: Literal["system", "user", "assistant"]
    content: str


def _since(change_set: ChangeSet, phrase: str = "changes since") -> str:
    return f" ({phrase} {change_set.previous_tag})" if change_set.previous_tag else ""


def _source_material(change_set: ChangeSet, body_label: str, pr_label: str, commit_label: str) -> str:
    prs = json.dumps([pr.model_dump() for pr in change_set.pull_requests], indent=2)
    commits = json.dumps([c.model_dump() for c in change_set.commits], indent=2)

    notes: list[str] = []
    if change_set.pull_requests_truncated:
        notes.append(
            f"Only the first {len(change_set.pull_requests)} referenced pull requests are listed. "
            "Do not describe the list as complete."
        )
    if change_set.is_empty:
        notes.append(
            "No commits or pull requests were found for this release. "
            "Say briefly that there are no significant changes to report."
        )

    material = (
        f"Source material:\n"
        f"- {body_label}:\n{change_set.release.body or '(none)'}\n\n"
        f"{pr_label}:\n{prs}\n\n"
        f"{commit_label}:\n{commits}"
    )
    if notes:
        material += "\n\nNotes:\n" + "\n".join(f"- {n}" for n in notes)
    return material


def build_customer_messages(change_set: ChangeSet, style: StyleConfig) -> list[ChatMessage]:
    system = f"""You write customer-facing release notes in Markdown for {style.product_name}.

Audience: customers and end-users.
Style:
- Benefit-focused: explain "what this does for you".
- Avoid jargon, internal code names, and implementation details.
- Do not mention commit SHAs.
- If you must mention a technical term, explain it briefly.
- Use short sections and bullet points.
- Be truthful: do not invent features.
- If information is missing, omit it rather than guessing.
Tone: {style.customer_tone}.
Signer: {style.company_name}."""

    material = _source_material(
        change_set,
        "Original GitHub release body (may contain useful phrasing)",
        "Pull requests (preferred over commits)",
        "Commits (use only when PRs are missing context)",
    )
    user = f"""Generate customer release notes for tag {change_set.release.tag_name}{_since(change_set)}.

Include:
- A brief headline summary (1-2 sentences).
- "What's new" (bullets).
- "Improvements" (bullets).
- "Fixes" (bullets).
- "Known issues" only if clearly indicated in the input.

{material}

Output ONLY Markdown. Do not wrap in code fences."""

    return [ChatMessage("system", system), ChatMessage("user", user)]


def build_developer_messages(change_set: ChangeSet, style: StyleConfig) -> list[ChatMessage]:
    system = f"""You write developer-facing release notes in Markdown for {style.product_name}.

Audience: engineers and technical users.
Style:
- Include technical details and relevant terminology.
- Call out breaking changes clearly.
- Organize by categories when possible (Features, Fixes, Chore/Infra, Docs).
- Include PR numbers and titles. You may include short excerpts from PR bodies if helpful.
- Mention commit SHAs only when needed for traceability; prefer PR references.
- Be truthful; do not invent changes.
- If the input is ambiguous, say so briefly rather than guessing.

Output must be Markdown only (no code fences)."""

    material = _source_material(change_set, "Original GitHub release body", "Pull requests", "Commits")
    user = f"""Generate developer release notes for tag {change_set.release.tag_name}{_since(change_set)}.

Include:
- Summary
- Breaking changes (if any)
- Detailed changes grouped by category
- Migration/upgrade notes only if strongly implied by the changes

{material}

Output ONLY Markdown."""

    return [ChatMessage("system", system), ChatMessage("user", user)]


def build_stakeholder_messages(change_set: ChangeSet, style: StyleConfig) -> list[ChatMessage]:
    system = f"""You write stakeholder/executive release notes in Markdown for {style.product_name}.

Audience: leadership, product, and stakeholders.
Style:
- Executive summary, low jargon.
- Emphasize outcomes, customer value, and risk.
- Call out any breaking changes or high-risk areas.
- Provide "Shipped vs Planned" if the original release body includes plans, checklists, or roadmap items.
- If planned items are not present, include "Shipped" only and state that planned scope was not provided.
- Be truthful and concise; do not invent metrics.

Output must be Markdown only (no code fences). Signed by {style.company_name}."""

    material = _source_material(
        change_set,
        "Original GitHub release body (may include planned scope)",
        "Pull requests",
        "Commits",
    )
    user = f"""Generate stakeholder release notes for tag {change_set.release.tag_name}{_since(change_set, 'since')}.

Include:
- Executive summary (3-6 bullets)
- Shipped (bullets)
- Planned vs Shipped (if possible based on the original release body)
- Risks / follow-ups (bullets; only if supported by data)

{material}

Output ONLY Markdown."""

    return [ChatMessage("system", system), ChatMessage("user", user)]


PROMPT_BUILDERS: dict[Audience, Callable[[ChangeSet, StyleConfig], list[ChatMessage]]] = {
    Audience.CUSTOMER: build_customer_messages,
    Audience.DEVELOPER: build_developer_messages,
    Audience.STAKEHOLDER: build_stakeholder_messages,
}
