"""Tests for the session driver: command dispatch and chat turns."""

import asyncio
import json

import pytest

from bedrock_service import BedrockError
from config import app_config
from session_driver import SessionDriver
from spec_workflow import SpecTask, load_spec


async def no_sleep(seconds):
    return None


@pytest.fixture
def driver(session_ctx):
    return SessionDriver(session_ctx, sleep=no_sleep)


def run(driver, line):
    return asyncio.run(driver.handle(line))


def test_help_and_unknown_commands(driver, service):
    assert run(driver, "/help").startswith("Commands:")
    assert run(driver, "/frobnicate now") == "Unknown command: /frobnicate. Type /help for commands."
    assert run(driver, "   ") == ""
    assert service.requests == []


def test_chat_turn_is_recorded_and_persisted(driver, service, session_ctx):
    service.queue_text("Hi! How can I help?")

    reply = run(driver, "hello there")

    assert reply == "Hi! How can I help?"
    session = session_ctx.session
    assert session.history == [
        {"role": "user", "content": "hello there"},
        {"role": "assistant", "content": "Hi! How can I help?"},
    ]
    assert session.name == "hello there"
    assert session.token_usage == {"input_tokens": 10, "output_tokens": 5}
    assert session_ctx.store.load(session.session_id).history == session.history

    request = service.requests[0]
    assert request["messages"][-1]["content"].startswith("hello there")
    assert "Working directory:" in request["system_prompt"]
    assert request["tools"]


def test_second_turn_sends_previous_history(driver, service):
    service.queue_text("first answer")
    service.queue_text("second answer")
    run(driver, "first question")
    run(driver, "second question")
    sent = service.requests[1]["messages"]
    assert [m["content"] for m in sent[:2]] == ["first question", "first answer"]
    assert sent[2]["content"].startswith("second question")


def test_file_mentions_are_inlined(driver, service, project):
    (project / "notes.md").write_text("remember the milk", encoding="utf-8")
    service.queue_text("noted")
    run(driver, "summarize @file:notes.md")
    content = service.requests[0]["messages"][-1]["content"]
    assert "=== MENTIONED CONTEXT ===" in content
    assert "remember the milk" in content


def test_tool_writes_can_be_undone(driver, service, project):
    service.queue_tool("write_file", {"path": "src/a.ts", "content": "export const a = 1;\n"})
    service.queue_text("Created src/a.ts")

    assert run(driver, "create a.ts") == "Created src/a.ts"
    assert (project / "src" / "a.ts").exists()
    assert "a.ts" in run(driver, "/history")

    assert "removed" in run(driver, "/undo")
    assert not (project / "src" / "a.ts").exists()
    assert run(driver, "/undo") == "No changes to undo"


def test_tool_round_cap_is_reported(driver, service, monkeypatch):
    monkeypatch.setattr(app_config, "max_tool_iterations", 1)
    service.queue_tool("list_directory", {"path": "."})
    service.queue_tool("list_directory", {"path": "."}, text="still looking")
    reply = run(driver, "look around")
    assert reply.endswith("(stopped after 1 tool rounds)")


def test_model_errors_are_reported_not_raised(driver, service, session_ctx):
    service.queue_error(BedrockError("Bedrock API error (400 ValidationException): bad"))
    reply = run(driver, "hello")
    assert reply.startswith("Error: ")
    assert "ValidationException" in reply
    assert session_ctx.session.history == []


def test_reset_and_quit(driver, service, session_ctx):
    service.queue_text("hi")
    run(driver, "hello")
    assert run(driver, "/reset") == "Conversation cleared."
    assert session_ctx.session.history == []
    assert not driver.should_exit
    assert run(driver, "/quit") == "Bye."
    assert driver.should_exit


def test_status_commands(driver):
    assert run(driver, "/context").startswith("Smart context not built yet")
    assert run(driver, "/watch start").startswith("Build the index first")
    assert run(driver, "/watch") == "File watcher stopped"
    assert run(driver, "/watch sideways") == "Usage: /watch start|stop|status"
    assert run(driver, "/steering").startswith("No steering files")
    assert run(driver, "/processes") == "No background processes."
    assert run(driver, "/tx") == "No transactions."
    assert run(driver, "/agent") == "Usage: /agent <goal>"


def test_spec_commands(driver, session_ctx, project):
    assert run(driver, "/spec") == "No active spec. Create one with /spec new <title>."
    assert run(driver, "/spec new") == "Usage: /spec new <title> [| description]"

    created = run(driver, "/spec new Todo app | a small todo list")
    assert created.startswith("Spec created: spec_")
    spec = driver.active_spec
    assert spec.description == "a small todo list"
    assert session_ctx.session.active_spec_id == spec.id

    assert run(driver, "/spec done TASK-1") == "Task not found: TASK-1"
    spec.tasks.append(SpecTask(id="TASK-1", title="Setup", description="Scaffold"))
    assert run(driver, "/spec done TASK-1") == "TASK-1 marked done."
    assert load_spec(str(project), spec.id).task("TASK-1").status == "done"
    assert "Todo app" in run(driver, "/spec show")
    assert "Todo app" in run(driver, "/specs")
    assert run(driver, "/spec load spec_nope") == "Spec not found: spec_nope"
    assert run(driver, "/spec sideways").startswith("Usage: /spec")
    assert run(driver, "/spec auto") == "All tasks are already complete."

    # a new driver on the same session picks the active spec back up
    assert SessionDriver(session_ctx, sleep=no_sleep).active_spec.id == spec.id


def test_spec_stage_without_prerequisites(driver, service):
    run(driver, "/spec new Empty")
    reply = run(driver, "/spec design")
    assert "requirements" in reply.lower()
    assert not reply.startswith("Error:")
    assert service.requests == []


def test_agent_command_folds_summary_into_history(driver, service, session_ctx):
    plan = {"steps": [{"id": 1, "description": "Create README"}]}
    service.queue_text(json.dumps(plan))
    service.queue_tool("write_file", {"path": "README.md", "content": "# Demo\n"})
    service.queue_text("README written")

    summary = run(driver, "/agent write a readme")

    assert "Status: done" in summary
    assert session_ctx.session.history[-2] == {"role": "user", "content": "/agent write a readme"}
    assert session_ctx.session.history[-1]["content"] == summary


def write_skill(directory, name, text):
    folder = directory / name
    folder.mkdir(parents=True, exist_ok=True)
    (folder / "SKILL.md").write_text(text, encoding="utf-8")


@pytest.fixture
def skills(tmp_path):
    directory = tmp_path / "skills"
    write_skill(directory, "house-style", "---\ninclusion: always\n---\nPrefer small functions.\n")
    write_skill(directory, "release-notes",
                "---\ndescription: Changelog entries\ntriggers: changelog\n---\nUse Keep a Changelog.\n")
    write_skill(directory, "deploy",
                "---\ndescription: Release to production\ninclusion: manual\ntriggers: deploy\n---\n"
                "Run the deploy script.\n")
    return directory


def test_chat_adds_matching_skills_to_system_prompt(driver, service, skills):
    service.queue_text("done")
    run(driver, "update the changelog")
    system_prompt = service.requests[0]["system_prompt"]
    assert "## Active Skills" in system_prompt
    assert "### house-style\nPrefer small functions." in system_prompt
    assert "### release-notes\nUse Keep a Changelog." in system_prompt
    assert "### deploy" not in system_prompt


def test_agent_mode_includes_manual_skills(driver, service, skills):
    service.queue_text(json.dumps({"steps": [{"id": 1, "description": "Ship it"}]}))
    service.queue_text("shipped")
    run(driver, "/agent deploy the service")
    plan_request = service.requests[0]["messages"][0]["content"]
    assert "### deploy\nRun the deploy script." in plan_request


def test_skills_command(driver, skills):
    listing = run(driver, "/skills")
    assert listing.startswith("Skills:")
    assert "  deploy [manual] Release to production" in listing
    assert "  house-style [always]" in listing


def test_docs_commands(driver, project):
    assert run(driver, "/docs").startswith("No docs.")
    assert run(driver, "/docs new Stripe") == "Created docs/stripe.md. Fill it in; matching questions will include it."
    assert run(driver, "/docs new Stripe") == "docs/stripe.md already exists."
    assert "STRIPE_API_KEY" in (project / "docs" / "stripe.md").read_text(encoding="utf-8")
    assert run(driver, "/docs list").startswith("Docs: 1 files")
    assert run(driver, "/docs remove stripe") == "Usage: /docs [list] | /docs new <service>"


def test_relevant_docs_join_the_message(driver, service, project):
    (project / "docs").mkdir()
    (project / "docs" / "stripe.md").write_text("Use the Stripe SDK.\nnpm install stripe\n", encoding="utf-8")
    service.queue_text("ok")
    service.queue_text("ok")

    run(driver, "add stripe checkout")
    run(driver, "explain @docs:stripe")

    auto = service.requests[0]["messages"][-1]["content"]
    assert auto.startswith("add stripe checkout")
    assert "=== PROJECT DOCS ===" in auto
    assert "npm install stripe" in auto
    mentioned = service.requests[1]["messages"][-1]["content"]
    assert mentioned.count("=== PROJECT DOCS ===") == 1


def test_pinned_files_stay_in_context(driver, service, project):
    (project / "src").mkdir()
    (project / "src" / "a.ts").write_text("export const a = 1;\n", encoding="utf-8")

    assert run(driver, "/pin") == "No pinned files."
    assert run(driver, "/pin src/a.ts") == "Pinned: src/a.ts (1 pinned)"
    assert run(driver, "/pin missing.ts") == "Error: File not found: missing.ts"
    assert run(driver, "/pin") == "Pinned: src/a.ts"

    service.queue_text("ok")
    run(driver, "what does the code do")
    assert "--- src/a.ts (pinned) ---\nexport const a = 1;" in service.requests[0]["messages"][-1]["content"]

    assert "Pinned: src/a.ts" in run(driver, "/context")
    assert run(driver, "/unpin src/a.ts") == "Unpinned: src/a.ts"
    assert run(driver, "/unpin") == "Usage: /unpin <path>"
    assert "Pinned: none" in run(driver, "/context")
