"""Tests for skill discovery and matching, and the project docs folder."""

import pytest

from project_docs import (
    DOC_CONTEXT_CHARS, DocFile, DocMatch, build_docs_context, create_doc_template, docs_status,
    extract_keywords, find_relevant_docs, scan_docs_folder,
)
from skills import (
    build_skills_context, discover_skills, format_skills_list, match_skills, match_workflow,
    score_skill, select_skills,
)

RELEASE_NOTES = """---
description: Changelog entries
triggers: changelog, release notes
---
Keep a Changelog format. Group entries by Added and Fixed.

| **Draft** | "draft, prepare" | workflows/draft.md |
| **Leak** | "x" | ../secret.md |
"""


def write_skill(directory, name, text):
    folder = directory / name
    folder.mkdir(parents=True, exist_ok=True)
    (folder / "SKILL.md").write_text(text, encoding="utf-8")
    return folder


@pytest.fixture
def shared(tmp_path):
    directory = tmp_path / "shared"
    notes = write_skill(directory, "release-notes", RELEASE_NOTES)
    (notes / "workflows").mkdir()
    (notes / "workflows" / "draft.md").write_text("Draft steps: collect merged PRs.", encoding="utf-8")
    (directory / "secret.md").write_text("outside the skill", encoding="utf-8")
    write_skill(directory, "deploy",
                "---\ndescription: Release to production\ninclusion: manual\ntriggers: deploy\n---\n"
                "Run the deploy script.\n")
    write_skill(directory, "house-style", "---\ndescription: Team conventions\ninclusion: always\n---\n"
                                          "Prefer small functions.\n")
    write_skill(directory, "frontend-design", "---\ndescription: React components and page layout\n---\n"
                                              "Use Tailwind utility classes.\n")
    (directory / "empty").mkdir()
    (directory / "loose.md").write_text("not a skill", encoding="utf-8")
    return directory


@pytest.fixture
def skills(project, shared):
    return discover_skills(str(project), str(shared))


def by_name(skills, name):
    return next(s for s in skills if s.name == name)


# ---------------------------------------------------------------------------
# Skills
# ---------------------------------------------------------------------------

def test_discover_skills(skills):
    assert [s.name for s in skills] == ["deploy", "frontend-design", "house-style", "release-notes"]
    notes = by_name(skills, "release-notes")
    assert notes.inclusion == "auto"
    assert notes.description == "Changelog entries"
    assert notes.triggers == ["changelog", "release notes"]
    assert notes.context.startswith("Keep a Changelog format.")
    assert [(w.name, w.trigger, w.file) for w in notes.workflows] == [
        ("Draft", "draft, prepare", "workflows/draft.md"),
        ("Leak", "x", "../secret.md"),
    ]
    assert notes.workflows[0].content == "Draft steps: collect merged PRs."
    assert notes.workflows[1].content == ""
    assert by_name(skills, "deploy").inclusion == "manual"
    assert {"react", "landing", "css"} <= set(by_name(skills, "frontend-design").triggers)


def test_project_skill_replaces_shared_one(project, shared):
    write_skill(project / ".bedrock-pilot" / "skills", "release-notes",
                "---\ndescription: Project changelog rules\ntriggers: changelog\n---\nOne line per change.\n")
    skills = discover_skills(str(project), str(shared))
    assert len(skills) == 4
    notes = by_name(skills, "release-notes")
    assert notes.description == "Project changelog rules"
    assert notes.workflows == []


def test_unknown_inclusion_falls_back_to_auto(project, tmp_path):
    directory = tmp_path / "odd"
    write_skill(directory, "odd", "---\ninclusion: sometimes\n---\nBody\n")
    [skill] = discover_skills(str(project), str(directory))
    assert skill.inclusion == "auto"


def test_score_skill(skills):
    notes = by_name(skills, "release-notes")
    # whole word plus a description word
    assert score_skill("update the changelog please", notes) == 16
    # substring only
    assert score_skill("changelogs", notes) == 9
    assert score_skill("update the changelog please", by_name(skills, "frontend-design")) == 0
    # trigger plus the name part
    assert score_skill("deploy the changelog", by_name(skills, "deploy")) == 25


def test_match_skills_threshold_and_manual(skills):
    assert [s.name for s in match_skills("update the changelog please", skills)] == ["release-notes"]
    assert match_skills("entries look fine", skills) == []
    assert [s.name for s in match_skills("deploy the changelog", skills)] == ["release-notes"]
    assert [s.name for s in match_skills("deploy the changelog", skills, ignore_inclusion=True)] == [
        "deploy", "release-notes",
    ]
    assert [s.name for s in match_skills("deploy the changelog", skills, ignore_inclusion=True,
                                         max_skills=1)] == ["deploy"]


def test_select_skills_puts_always_skills_first(skills):
    assert [s.name for s in select_skills("deploy the changelog", skills)] == ["house-style", "release-notes"]
    assert [s.name for s in select_skills("hello", skills)] == ["house-style"]


def test_workflow_matching(skills):
    notes = by_name(skills, "release-notes")
    assert match_workflow("prepare the changelog", notes).name == "Draft"
    assert match_workflow("update the changelog", notes) is None


def test_build_skills_context(skills):
    notes = by_name(skills, "release-notes")
    context = build_skills_context([notes], "prepare the changelog")
    assert context.startswith("## Active Skills\n")
    assert "### release-notes\nKeep a Changelog format." in context
    assert "#### Workflow: Draft\nDraft steps: collect merged PRs." in context
    assert "#### Workflow" not in build_skills_context([notes], "update the changelog")
    assert build_skills_context([], "anything") == ""


def test_format_skills_list(skills):
    listing = format_skills_list(skills)
    assert listing.startswith("Skills:\n")
    assert "  release-notes [auto] Changelog entries" in listing
    assert '    workflow Draft: "draft, prepare"' in listing
    assert format_skills_list([]).startswith("No skills.")


# ---------------------------------------------------------------------------
# Project docs
# ---------------------------------------------------------------------------

@pytest.fixture
def docs(project):
    folder = project / "docs"
    (folder / "guides").mkdir(parents=True)
    (folder / "stripe.md").write_text("# Stripe\nUse the Stripe SDK. npm install stripe\nSet STRIPE_API_KEY.\n",
                                      encoding="utf-8")
    (folder / "guides" / "redis-notes.txt").write_text("Cache sessions in Redis.\n", encoding="utf-8")
    (folder / "logo.png").write_bytes(b"\x89PNG")
    (folder / "huge.md").write_text("a" * 500001, encoding="utf-8")
    return scan_docs_folder(str(project))


def test_scan_docs_folder(docs):
    assert [d.relative_path for d in docs] == ["stripe.md", "guides/redis-notes.txt"]
    assert docs[1].name == "redis-notes.txt"


def test_extract_keywords():
    keywords = extract_keywords("stripe.md", "Use the Stripe SDK. npm install stripe\nSet STRIPE_API_KEY.")
    assert keywords[0] == "stripe"
    assert {"payment", "checkout", "api_key", "sdk", "npm install stripe"} <= set(keywords)
    assert extract_keywords("redis-notes.txt", "Cache sessions in Redis.") == [
        "redis-notes", "redis", "notes", "cache", "session",
    ]


def test_find_relevant_docs(docs):
    [match] = find_relevant_docs("add a payment page", docs)
    assert match.doc.relative_path == "stripe.md"
    assert match.score == 120
    assert "payment" in match.matched_keywords

    [match] = find_relevant_docs("cache", docs)
    assert match.doc.relative_path == "guides/redis-notes.txt"
    assert match.score == 75

    assert find_relevant_docs("nothing here", docs) == []


def test_build_docs_context_truncates_long_docs():
    doc = DocFile(name="big.md", path="/x/docs/big.md", relative_path="big.md",
                  content="x" * (DOC_CONTEXT_CHARS + 100), size=DOC_CONTEXT_CHARS + 100)
    context = build_docs_context([DocMatch(doc=doc, score=50, matched_keywords=["big"])])
    assert context.startswith("\n\n=== PROJECT DOCS ===")
    assert "📚 big.md (matched: big)" in context
    assert "\n... [truncated]" in context
    assert "x" * (DOC_CONTEXT_CHARS + 1) not in context
    assert build_docs_context([]) == ""


def test_docs_status(project, docs):
    status = docs_status(str(project))
    assert status.startswith("Docs: 2 files\n")
    assert "  stripe.md (1KB) stripe, payment" in status


def test_docs_status_without_folder(project):
    assert docs_status(str(project)).startswith("No docs.")


def test_create_doc_template(project):
    path, created = create_doc_template(str(project), "Send Grid")
    assert created
    assert path == str(project / "docs" / "send-grid.md")
    text = (project / "docs" / "send-grid.md").read_text(encoding="utf-8")
    assert text.startswith("# Send Grid integration notes")
    assert "SEND_GRID_API_KEY=your_api_key" in text
    assert "npm install send-grid" in text

    (project / "docs" / "send-grid.md").write_text("mine", encoding="utf-8")
    assert create_doc_template(str(project), "send grid") == (path, False)
    assert (project / "docs" / "send-grid.md").read_text(encoding="utf-8") == "mine"

    with pytest.raises(ValueError):
        create_doc_template(str(project), "!!!")
