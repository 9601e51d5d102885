"""Tests for spec persistence, stage generation and task implementation."""

import asyncio
import json
import os

import pytest

from agent import AgentConfig, AgentRunner, PlanParseError
from bedrock_service import BedrockError
from config import specs_dir
from spec_workflow import (
    Requirement, DesignDecision, Spec, SpecStageError, SpecTask, SpecWorkflow, apply_task_status,
    create_spec, expand_file_references, format_spec, format_specs_list, get_active_spec, list_specs,
    load_spec, parse_file_references, render_markdown, save_spec, update_task_status,
)


async def no_sleep(seconds):
    return None


@pytest.fixture
def workflow(project, service, session_ctx):
    runner = AgentRunner(service, session_ctx.executor, session_ctx.diagnostics,
                         config=AgentConfig(auto_fix=False, max_retries=1), sleep=no_sleep)
    return SpecWorkflow(str(project), service, session_ctx.executor, runner=runner, sleep=no_sleep)


def spec_with_tasks(root, *statuses):
    spec = Spec(
        id="spec_1",
        title="Todo app",
        status="tasks",
        requirements=[Requirement(id="REQ-1", description="Add todos", acceptance=["Todo appears in list"])],
        design=[DesignDecision(id="DES-1", component="TodoList", description="List component")],
        tasks=[
            SpecTask(id=f"TASK-{i + 1}", title=f"Task {i + 1}", description=f"Build part {i + 1}",
                     status=status, requirement_ids=["REQ-1"])
            for i, status in enumerate(statuses)
        ],
    )
    save_spec(str(root), spec)
    return spec


def test_create_save_and_load(project):
    (project / "README.md").write_text("# Notes\n", encoding="utf-8")
    spec = create_spec(str(project), "Todo app", "Build on #[[file:README.md]]")

    assert spec.id.startswith("spec_")
    assert spec.status == "draft"
    assert spec.references == ["README.md"]
    assert os.path.isfile(os.path.join(specs_dir(str(project)), f"{spec.id}.json"))
    assert os.path.isfile(os.path.join(specs_dir(str(project)), f"{spec.id}.md"))

    loaded = load_spec(str(project), spec.id)
    assert loaded.title == "Todo app"
    assert loaded.references == ["README.md"]
    assert load_spec(str(project), "spec_missing") is None


def test_specs_created_together_get_distinct_ids(project):
    first = create_spec(str(project), "One")
    second = create_spec(str(project), "Two")
    assert first.id != second.id
    assert {s.title for s in list_specs(str(project))} == {"One", "Two"}


def test_active_spec_skips_done_specs(project):
    spec = spec_with_tasks(project, "done")
    spec.status = "done"
    save_spec(str(project), spec)
    assert get_active_spec(str(project)) is None
    other = create_spec(str(project), "Next")
    assert get_active_spec(str(project)).id == other.id


def test_from_dict_accepts_camel_case_task_keys():
    spec = Spec.from_dict({
        "id": "spec_2", "title": "T",
        "tasks": [{"id": "TASK-1", "title": "Setup", "dependsOn": ["TASK-0"], "requirementIds": ["REQ-1"],
                   "status": "weird"}],
    })
    task = spec.tasks[0]
    assert task.depends_on == ["TASK-0"]
    assert task.requirement_ids == ["REQ-1"]
    assert task.status == "pending"


def test_file_references(project):
    (project / "api.ts").write_text("export const api = 1;", encoding="utf-8")
    text = "See #[[file:api.ts]] and #[[file:gone.ts]]"
    refs = parse_file_references(text, str(project))
    assert [(r.path, r.content is not None) for r in refs] == [("api.ts", True), ("gone.ts", False)]
    expanded = expand_file_references(text, str(project))
    assert "```ts\n// api.ts\nexport const api = 1;\n```" in expanded
    assert "[File not found: gone.ts]" in expanded


def test_task_status_updates(project):
    spec = spec_with_tasks(project, "pending", "pending")
    assert not apply_task_status(spec, "TASK-9", "done")
    with pytest.raises(ValueError):
        apply_task_status(spec, "TASK-1", "finished")

    assert apply_task_status(spec, "TASK-1", "in-progress")
    assert spec.status == "implementing"

    updated = update_task_status(str(project), "spec_1", "TASK-2", "skipped")
    assert updated.task("TASK-2").status == "skipped"
    assert load_spec(str(project), "spec_1").task("TASK-2").status == "skipped"
    assert update_task_status(str(project), "spec_nope", "TASK-1", "done") is None


def test_rendering(project):
    spec = spec_with_tasks(project, "done", "pending")
    md = render_markdown(spec)
    assert md.startswith("# Todo app")
    assert "- [x] **TASK-1:** Task 1 _done_" in md
    assert "- [ ] **TASK-2:** Task 2 _pending_" in md
    assert "- [ ] Todo appears in list" in md
    assert "Tasks (1/2):" in format_spec(spec)
    assert "(1/2 tasks)" in format_specs_list([spec])
    assert format_specs_list([]).startswith("No specs yet")


def test_stages_in_order(workflow, service, project):
    spec = create_spec(str(project), "Todo app", "A small todo list")
    service.queue_text(json.dumps({"requirements": [
        {"id": "REQ-1", "category": "core", "priority": "P0", "description": "Add todos", "acceptance": ["shown"]},
    ]}))
    service.queue_text("```json\n" + json.dumps({"design": [
        {"id": "DES-1", "component": "TodoList", "description": "Renders todos", "rationale": "simple"},
    ]}) + "\n```")
    service.queue_text(json.dumps({"tasks": [
        {"id": "TASK-1", "title": "Setup", "description": "Scaffold", "status": "done", "dependsOn": []},
        {"id": "TASK-2", "title": "List", "description": "TodoList component", "depends_on": ["TASK-1"]},
    ]}))

    async def run():
        await workflow.generate_requirements(spec)
        assert spec.status == "requirements"
        await workflow.generate_design(spec)
        assert spec.status == "design"
        await workflow.generate_tasks(spec)

    asyncio.run(run())

    assert spec.status == "tasks"
    assert [t.status for t in spec.tasks] == ["pending", "pending"]
    assert spec.tasks[1].depends_on == ["TASK-1"]
    assert spec.requirements[0].priority == "P0"
    assert "A small todo list" in service.requests[0]["messages"][0]["content"]
    assert "[REQ-1] Add todos" in service.requests[1]["messages"][0]["content"]
    assert all(r["tools"] is None for r in service.requests)
    assert len(load_spec(str(project), spec.id).tasks) == 2


def test_stage_prerequisites(workflow, service, project):
    spec = create_spec(str(project), "Empty")
    with pytest.raises(SpecStageError):
        asyncio.run(workflow.generate_design(spec))
    with pytest.raises(SpecStageError):
        asyncio.run(workflow.generate_tasks(spec))
    with pytest.raises(SpecStageError):
        asyncio.run(workflow.implement_next(spec))
    with pytest.raises(SpecStageError):
        asyncio.run(workflow.run_auto(spec))
    assert service.requests == []


def test_unparseable_stage_leaves_spec_unchanged(workflow, service, project):
    spec = create_spec(str(project), "Todo")
    service.queue_text("Sure! Here are some thoughts about requirements.")
    with pytest.raises(PlanParseError):
        asyncio.run(workflow.generate_requirements(spec))
    assert spec.status == "draft"
    assert load_spec(str(project), spec.id).requirements == []


def test_implement_next_runs_tasks_in_order(workflow, service, project):
    spec = spec_with_tasks(project, "pending", "pending")
    service.queue_tool("write_file", {"path": "src/part1.ts", "content": "export const one = 1;\n"})
    service.queue_text("Part 1 written")
    service.queue_text("Part 2 written")

    first = asyncio.run(workflow.implement_next(spec))
    assert first.id == "TASK-1"
    assert (project / "src" / "part1.ts").exists()
    assert spec.task("TASK-1").status == "done"
    assert spec.status == "implementing"
    prompt = service.requests[0]["messages"][0]["content"]
    assert "TASK: Task 1" in prompt
    assert "Acceptance: Todo appears in list" in prompt

    second = asyncio.run(workflow.implement_next(spec))
    assert second.id == "TASK-2"
    assert spec.status == "done"
    assert asyncio.run(workflow.implement_next(spec)) is None
    assert load_spec(str(project), "spec_1").status == "done"


def test_implement_next_failure_reverts_task(workflow, service, project):
    spec = spec_with_tasks(project, "pending")
    service.queue_error(BedrockError("Bedrock API error (400 ValidationException): bad"))
    with pytest.raises(BedrockError):
        asyncio.run(workflow.implement_next(spec))
    assert spec.task("TASK-1").status == "pending"
    assert load_spec(str(project), "spec_1").task("TASK-1").status == "pending"


def test_run_auto_writes_step_outcomes_back_by_task_id(workflow, service, project):
    spec = spec_with_tasks(project, "pending", "done", "pending")
    service.queue_text("Task 1 done")
    service.queue_error(BedrockError("Bedrock API error (400 ValidationException): broken"))

    plan = asyncio.run(workflow.run_auto(spec))

    # no planning call: one request per pending task
    assert len(service.requests) == 2
    assert [s.task_id for s in plan.steps] == ["TASK-1", "TASK-3"]
    assert plan.steps[0].description == "Task 1: Build part 1"
    assert plan.status == "failed"
    assert [t.status for t in spec.tasks] == ["done", "done", "pending"]
    assert [t.status for t in load_spec(str(project), "spec_1").tasks] == ["done", "done", "pending"]


def test_run_auto_with_nothing_pending(workflow, service, project):
    spec = spec_with_tasks(project, "done", "skipped")
    plan = asyncio.run(workflow.run_auto(spec))
    assert plan.status == "done"
    assert plan.steps == []
    assert service.requests == []


def test_references_context(workflow, project):
    (project / "schema.sql").write_text("create table todo();", encoding="utf-8")
    spec = spec_with_tasks(project, "pending")
    spec.description = "Use #[[file:schema.sql]]"
    context = workflow.references_context(spec)
    assert "## Referenced Files:" in context
    assert "create table todo();" in context
