"""
Session driver: turns one line of user input into one rendered reply.

Slash commands are dispatched to handlers; anything else is a chat turn
(mentions -> docs -> smart context -> steering and skills -> history budget ->
tool loop).
Operation failures are logged and reported in the reply; only /quit ends
the session.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from agent.events import EventCallback, emit
from agent.history import ensure_user_first, history_stats, optimize_history
from agent.loop import run_tool_loop
from agent.plan import format_summary
from agent.prompts import build_system_prompt
from agent.runner import AgentRunner
from bedrock_service import BedrockError
from config import app_config
from context_selector import build_smart_context, build_smart_index, format_smart_index_info
from embeddings import index_status
from mentions import build_mention_context, format_mentions, parse_mentions
from project_docs import (
    AGENT_MIN_SCORE, CHAT_MIN_SCORE, DocMatch, build_docs_context, create_doc_template, docs_status,
    find_relevant_docs, scan_docs_folder,
)
from session_context import SessionContext
from skills import Skill, build_skills_context, discover_skills, format_skills_list, select_skills
from spec_workflow import (
    Spec, SpecStageError, SpecWorkflow, apply_task_status, create_spec, format_spec,
    format_specs_list, get_active_spec, list_specs, load_spec, save_spec,
)
from steering import (
    build_steering_context, discover_steering_files, format_steering_list, get_active_steering,
    parse_steering_mentions,
)

logger = logging.getLogger(__name__)

MAX_ACTIVE_FILES = 5
CHAT_DOCS = 2
AGENT_DOCS = 3

HELP_TEXT = """Commands:
  /index                 Rebuild the semantic index (chunks, embeddings, dependency graph)
  /watch start|stop|status  Incremental index updates on file changes
  /context               Semantic index status
  /agent <goal>          Plan and carry out a goal autonomously
  /spec new <title> [| description]   Start a spec
  /spec list | show | load <id>
  /spec requirements | design | tasks  Generate the next stage
  /spec next             Implement the next pending task
  /spec auto             Implement every pending task as an agent plan
  /spec done <task> | skip <task>
  /undo [path]           Undo the last file change
  /history               Recent file changes
  /tx                    Multi-file transactions
  /processes             Background processes
  /steering              Steering files
  /skills                Skills
  /docs [new <service>]  Project docs, or a new doc template
  /pin [path]            Pin a file into every turn (no path lists pins)
  /unpin <path>          Release a pinned file
  /reset                 Clear the conversation
  /quit                  Exit

Mentions: @file:path @folder:path @symbol:name @docs:query @web:query @git @git:diff"""


class SessionDriver:
    """Read-eval core of the assistant. One instance per session."""

    def __init__(self, ctx: SessionContext, on_event: Optional[EventCallback] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.ctx = ctx
        self.on_event = on_event
        self.sleep = sleep
        self.runner = AgentRunner(ctx.service, ctx.executor, ctx.diagnostics, on_event=on_event, sleep=sleep)
        self.specs = SpecWorkflow(ctx.root, ctx.service, ctx.executor, runner=self.runner,
                                  on_event=on_event, sleep=sleep)
        self.should_exit = False
        self.active_spec: Optional[Spec] = None
        if ctx.session is not None and ctx.session.active_spec_id:
            self.active_spec = load_spec(ctx.root, ctx.session.active_spec_id)
        self._commands: Dict[str, Callable[[str], Awaitable[str]]] = {
            "help": self._cmd_help,
            "index": self._cmd_index,
            "watch": self._cmd_watch,
            "context": self._cmd_context,
            "agent": self._cmd_agent,
            "spec": self._cmd_spec,
            "specs": lambda _: self._spec_list(),
            "undo": self._cmd_undo,
            "history": self._cmd_history,
            "tx": self._cmd_tx,
            "processes": self._cmd_processes,
            "steering": self._cmd_steering,
            "skills": self._cmd_skills,
            "docs": self._cmd_docs,
            "pin": self._cmd_pin,
            "unpin": self._cmd_unpin,
            "reset": self._cmd_reset,
            "quit": self._cmd_quit,
            "exit": self._cmd_quit,
        }

    async def handle(self, line: str) -> str:
        """Process one input line and return the text to show."""
        line = line.strip()
        if not line:
            return ""
        try:
            if line.startswith("/"):
                name, _, args = line[1:].partition(" ")
                handler = self._commands.get(name.lower())
                if handler is None:
                    return f"Unknown command: /{name}. Type /help for commands."
                return await handler(args.strip())
            return await self.chat(line)
        except SpecStageError as e:
            return str(e)
        except Exception as e:
            logger.exception(f"Command failed: {line[:80]}")
            return f"Error: {e}"

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def active_files(self) -> List[str]:
        """Files most recently modified through tools, relative to the root."""
        return [self.ctx.backend.relative_path(p) for p in sorted(self.ctx.tools.modified_files)][:MAX_ACTIVE_FILES]

    async def _codebase_summary(self) -> str:
        loop = asyncio.get_running_loop()
        index = await loop.run_in_executor(None, self.ctx.index_cache.get, self.ctx.root)
        return index.summary

    async def chat(self, message: str) -> str:
        ctx = self.ctx
        loop = asyncio.get_running_loop()

        steering_files = discover_steering_files(ctx.root)
        text, manual = parse_steering_mentions(message, steering_files)
        text, mentions = parse_mentions(text, ctx.backend)
        if mentions:
            await emit(self.on_event, "mentions", format_mentions(mentions))
        index = None
        if any(m.type == "symbol" for m in mentions):
            index = await loop.run_in_executor(None, ctx.index_cache.get, ctx.root)
        mention_context = await loop.run_in_executor(None, build_mention_context, mentions, ctx.backend, index)

        docs_context = ""
        if not any(m.type == "docs" for m in mentions):
            docs_context = await self._docs_context(text, CHAT_DOCS, CHAT_MIN_SCORE)

        mentioned_files = [m.value for m in mentions if m.type == "file"]
        active_files = self.active_files()
        pinned_files = list(ctx.tools.pinned_files)
        embed_fn = ctx.embed_fn if ctx.smart_index is not None else None
        try:
            smart = await loop.run_in_executor(
                None, lambda: build_smart_context(
                    text, ctx.root, ctx.smart_index, embed_fn,
                    active_files=active_files, mentioned_files=mentioned_files,
                    pinned_files=pinned_files,
                ),
            )
        except BedrockError as e:
            logger.warning(f"Smart context unavailable, continuing without it: {e}")
            smart = None
        if smart is not None and smart.context:
            await emit(self.on_event, "context", smart.stats, sources=smart.sources)

        steering = get_active_steering(steering_files, active_files + mentioned_files, manual)
        skills = await self._select_skills(text)
        extra = [build_steering_context(steering), build_skills_context(skills, text)]
        system_prompt = build_system_prompt(ctx.root, "\n\n".join(p for p in extra if p) or None)

        content = text + mention_context + docs_context
        if smart is not None and smart.context:
            content += "\n\n=== RELEVANT CODE ===\n" + smart.context

        session = ctx.session
        history = optimize_history(ensure_user_first(session.history), app_config.history_max_tokens)
        result = await run_tool_loop(
            ctx.service, ctx.executor,
            history + [{"role": "user", "content": content}],
            system_prompt=system_prompt,
            max_iterations=app_config.max_tool_iterations,
            on_event=self.on_event,
            sleep=self.sleep,
        )

        reply = result.text or "(no response)"
        first_turn = not session.history
        session.history.append({"role": "user", "content": message})
        session.history.append({"role": "assistant", "content": reply})
        session.add_usage(result.input_tokens, result.output_tokens)
        if first_turn and ctx.store is not None:
            ctx.store.auto_name_session(session, message)
        ctx.persist()
        if result.hit_limit:
            reply += f"\n\n(stopped after {result.iterations} tool rounds)"
        return reply

    async def _select_skills(self, message: str, ignore_inclusion: bool = False) -> List[Skill]:
        skills = select_skills(message, discover_skills(self.ctx.root, self.ctx.skills_dir), ignore_inclusion)
        if skills:
            await emit(self.on_event, "skills", "Skills: " + ", ".join(s.name for s in skills))
        return skills

    async def _docs_context(self, query: str, max_results: int, min_score: int) -> str:
        """Docs matching query, when the best one scores at least min_score."""
        loop = asyncio.get_running_loop()
        matches: List[DocMatch] = await loop.run_in_executor(
            None, lambda: find_relevant_docs(query, scan_docs_folder(self.ctx.root), max_results),
        )
        if not matches or matches[0].score < min_score:
            return ""
        await emit(self.on_event, "docs", "Docs: " + ", ".join(m.doc.relative_path for m in matches))
        return build_docs_context(matches)

    def _fold_into_history(self, request: str, summary: str) -> None:
        """Record a command outcome in the conversation; its tool exchanges stay out."""
        self.ctx.session.history.append({"role": "user", "content": request})
        self.ctx.session.history.append({"role": "assistant", "content": summary})
        self.ctx.persist()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def _cmd_help(self, args: str) -> str:
        return HELP_TEXT

    async def _cmd_index(self, args: str) -> str:
        ctx = self.ctx
        was_watching = ctx.watcher.is_running()
        if was_watching:
            # a full rebuild replaces the index the watcher writes into
            ctx.watcher.stop()
        await emit(self.on_event, "index", "Indexing codebase...")
        loop = asyncio.get_running_loop()
        ctx.smart_index = await loop.run_in_executor(
            None, lambda: build_smart_index(ctx.root, ctx.embed_fn, force_reindex=True),
        )
        ctx.index_cache.invalidate(ctx.root)
        if was_watching:
            ctx.watcher.start()
        return ctx.smart_index.summary

    async def _cmd_watch(self, args: str) -> str:
        watcher = self.ctx.watcher
        action = args or "status"
        if action == "start":
            if self.ctx.smart_index is None:
                return "Build the index first with /index; the watcher updates it incrementally."
            return "File watcher started" if watcher.start() else "File watcher already running"
        if action == "stop":
            watcher.stop()
            return "File watcher stopped"
        if action == "status":
            return watcher.status()
        return "Usage: /watch start|stop|status"

    async def _cmd_context(self, args: str) -> str:
        ctx = self.ctx
        lines = [
            format_smart_index_info(ctx.smart_index),
            index_status(ctx.embedding_index()),
            ctx.watcher.status(),
        ]
        lines.append("Pinned: " + (", ".join(ctx.tools.pinned_files) or "none"))
        stats = history_stats(ctx.session.history)
        lines.append(f"Conversation: {stats['message_count']} messages, ~{stats['history_tokens']:,} tokens")
        return "\n".join(lines)

    async def _cmd_agent(self, args: str) -> str:
        goal = args.strip()
        if not goal:
            return "Usage: /agent <goal>"
        if goal == "spec":
            return await self._spec_auto()
        # agent mode also picks manual skills
        skills = await self._select_skills(goal, ignore_inclusion=True)
        context = [
            build_skills_context(skills, goal),
            await self._docs_context(goal, AGENT_DOCS, AGENT_MIN_SCORE),
            await self._codebase_summary(),
        ]
        plan = await self.runner.run_agent_mode(goal, "\n\n".join(p.strip() for p in context if p))
        summary = format_summary(plan)
        self._fold_into_history(f"/agent {goal}", summary)
        return summary

    async def _cmd_undo(self, args: str) -> str:
        path = self.ctx.backend.resolve_path(args) if args else None
        result = self.ctx.snapshots.undo_last_change(path)
        self.ctx.executor.cache.clear()
        return result.message

    async def _cmd_history(self, args: str) -> str:
        snapshots = self.ctx.snapshots
        return snapshots.format_history(snapshots.get_recent_changes(10))

    async def _cmd_tx(self, args: str) -> str:
        return self.ctx.transactions.format_transactions()

    async def _cmd_processes(self, args: str) -> str:
        return self.ctx.processes.format_list()

    async def _cmd_steering(self, args: str) -> str:
        return format_steering_list(discover_steering_files(self.ctx.root))

    async def _cmd_skills(self, args: str) -> str:
        return format_skills_list(discover_skills(self.ctx.root, self.ctx.skills_dir))

    async def _cmd_docs(self, args: str) -> str:
        sub, _, name = args.partition(" ")
        if not sub or sub == "list":
            return docs_status(self.ctx.root)
        if sub != "new" or not name.strip():
            return "Usage: /docs [list] | /docs new <service>"
        path, created = create_doc_template(self.ctx.root, name)
        rel = self.ctx.backend.relative_path(path)
        return f"Created {rel}. Fill it in; matching questions will include it." if created \
            else f"{rel} already exists."

    async def _cmd_pin(self, args: str) -> str:
        if not args:
            pinned = self.ctx.tools.pinned_files
            return "Pinned: " + ", ".join(pinned) if pinned else "No pinned files."
        return (await self.ctx.executor.execute("pin_file", {"path": args})).as_text()

    async def _cmd_unpin(self, args: str) -> str:
        if not args:
            return "Usage: /unpin <path>"
        return (await self.ctx.executor.execute("unpin_file", {"path": args})).as_text()

    async def _cmd_reset(self, args: str) -> str:
        self.ctx.session.history.clear()
        self.ctx.persist()
        return "Conversation cleared."

    async def _cmd_quit(self, args: str) -> str:
        self.should_exit = True
        return "Bye."

    # ------------------------------------------------------------------
    # /spec
    # ------------------------------------------------------------------

    def _set_active_spec(self, spec: Optional[Spec]) -> None:
        self.active_spec = spec
        if self.ctx.session is not None:
            self.ctx.session.active_spec_id = spec.id if spec else None
            self.ctx.persist()

    def _require_spec(self) -> Spec:
        spec = self.active_spec or get_active_spec(self.ctx.root)
        if spec is None:
            raise SpecStageError("No active spec. Create one with /spec new <title>.")
        if spec is not self.active_spec:
            self._set_active_spec(spec)
        return spec

    async def _cmd_spec(self, args: str) -> str:
        sub, _, rest = args.partition(" ")
        sub = sub.lower()
        rest = rest.strip()
        if sub in ("", "show"):
            return format_spec(self._require_spec())
        if sub == "new":
            return self._spec_new(rest)
        if sub == "list":
            return await self._spec_list()
        if sub == "load":
            spec = load_spec(self.ctx.root, rest)
            if spec is None:
                return f"Spec not found: {rest}"
            self._set_active_spec(spec)
            return format_spec(spec)
        if sub in ("requirements", "req"):
            spec = await self.specs.generate_requirements(self._require_spec(), await self._codebase_summary())
            return format_spec(spec)
        if sub == "design":
            spec = await self.specs.generate_design(self._require_spec(), await self._codebase_summary())
            return format_spec(spec)
        if sub == "tasks":
            spec = await self.specs.generate_tasks(self._require_spec(), await self._codebase_summary())
            return format_spec(spec)
        if sub in ("next", "implement"):
            return await self._spec_next()
        if sub in ("auto", "agent"):
            return await self._spec_auto()
        if sub in ("done", "skip"):
            return self._spec_mark(rest, "done" if sub == "done" else "skipped")
        return "Usage: /spec new|list|show|load|requirements|design|tasks|next|auto|done|skip"

    def _spec_new(self, rest: str) -> str:
        title, _, description = rest.partition("|")
        title = title.strip()
        if not title:
            return "Usage: /spec new <title> [| description]"
        spec = create_spec(self.ctx.root, title, description.strip())
        self._set_active_spec(spec)
        lines = [f"Spec created: {spec.id}", f"  {app_config.app_dir_name}/specs/{spec.id}.md"]
        if spec.references:
            lines.append(f"  References: {', '.join(spec.references)}")
        lines.append("Next: /spec requirements")
        return "\n".join(lines)

    async def _spec_list(self) -> str:
        return format_specs_list(list_specs(self.ctx.root))

    def _spec_mark(self, task_id: str, status: str) -> str:
        spec = self._require_spec()
        if not task_id:
            return f"Usage: /spec {'done' if status == 'done' else 'skip'} <task id>"
        if not apply_task_status(spec, task_id, status):
            return f"Task not found: {task_id}"
        save_spec(self.ctx.root, spec)
        return f"{task_id} marked {status}."

    async def _spec_next(self) -> str:
        spec = self._require_spec()
        task = await self.specs.implement_next(spec, await self._codebase_summary())
        if task is None:
            return "All tasks are complete."
        remaining = len(spec.pending_tasks())
        tail = f"{remaining} tasks left. Continue with /spec next." if remaining else "All tasks are complete."
        summary = f"Task completed: {task.id} {task.title}\n{tail}"
        self._fold_into_history(f"/spec next ({task.id})", summary)
        return summary

    async def _spec_auto(self) -> str:
        spec = self._require_spec()
        if spec.tasks and not spec.pending_tasks():
            return "All tasks are already complete."
        plan = await self.specs.run_auto(spec, await self._codebase_summary())
        summary = format_summary(plan)
        if plan.status == "done":
            summary += f"\n\nSpec completed: {spec.title}"
        else:
            summary += "\n\nSome tasks did not complete; they are pending again. See /spec show."
        self._fold_into_history(f"/spec auto ({spec.id})", summary)
        return summary

