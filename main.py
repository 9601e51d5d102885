"""
Bedrock Pilot - terminal coding assistant powered by Amazon Bedrock.
Terminal UI built with Textual + Rich over the SessionDriver.
"""

import argparse
import logging
import os
import sys
import time
from typing import Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import VerticalScroll
from textual.widgets import Header, Footer, Input, Static
from textual.reactive import reactive
from textual.timer import Timer
from textual import on, work

from rich.text import Text
from rich.markdown import Markdown
from rich.markup import escape as rich_escape

from agent import AgentEvent
from bedrock_service import BedrockService, BedrockError
from config import app_config, get_credentials_info
from session_context import SessionContext, create_session_context
from session_driver import SessionDriver
from sessions import SessionStore

# Log to a file so it doesn't interfere with the TUI
logging.basicConfig(
    filename=app_config.log_file,
    level=getattr(logging, app_config.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


SPINNER_FRAMES = ["⣷", "⣯", "⣟", "⡿", "⢿", "⣻", "⣽", "⣾"]

TOOL_ICONS = {
    "read_file": "\U0001f4c4 ",
    "write_file": "✏️ ",
    "edit_file": "\U0001f527 ",
    "run_command": "▶ ",
    "search_files": "\U0001f50d ",
    "search_symbols": "\U0001f50d ",
    "list_directory": "\U0001f4c2 ",
    "multi_file_edit": "\U0001f527 ",
    "web_search": "\U0001f310 ",
}

EVENT_STYLES = {
    "plan": "#d2a8ff",
    "step_start": "#79c0ff",
    "step_done": "#3fb950",
    "step_retry": "#e3b341",
    "step_failed": "#f85149",
    "fix": "#e3b341",
    "retry": "#e3b341",
    "error": "#f85149",
    "context": "#6e7681",
    "mentions": "#6e7681",
    "skills": "#d2a8ff",
    "docs": "#6e7681",
    "index": "#6e7681",
}


class BedrockPilotApp(App):
    """Bedrock Pilot - Coding Assistant TUI"""

    TITLE = "Bedrock Pilot"
    ALLOW_SELECT = True

    CSS = """
    Screen { background: #101418; }

    #output-scroll {
        height: 1fr;
        padding: 0 1;
        scrollbar-size-vertical: 1;
    }

    #output-scroll > Static { height: auto; }

    #status-bar {
        dock: bottom;
        height: 1;
        padding: 0 1;
        color: #8b949e;
        background: #1b2128;
    }

    #user-input {
        dock: bottom;
        margin: 0 1;
        border: round #3b4450;
        background: #141a20;
    }

    #user-input:focus { border: round #e3b341; }
    """

    BINDINGS = [
        Binding("ctrl+c", "quit_app", "Quit", priority=True),
        Binding("ctrl+l", "clear_screen", "Clear"),
    ]

    is_running = reactive(False)

    def __init__(self, working_directory: str = ".", session_name: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.working_directory = os.path.abspath(working_directory)
        self.session_name = session_name
        self._ctx: Optional[SessionContext] = None
        self._driver: Optional[SessionDriver] = None
        self._widget_counter = 0
        self._spinner_idx = 0
        self._spinner_timer: Optional[Timer] = None
        self._task_start_time: Optional[float] = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static("", id="status-bar")
        yield VerticalScroll(id="output-scroll")
        yield Input(
            placeholder=" ❯ Ask anything, @mention files, or /help",
            id="user-input",
        )
        yield Footer()

    # ============================================================
    # Output helpers
    # ============================================================

    def _next_id(self, prefix: str = "out") -> str:
        self._widget_counter += 1
        return f"{prefix}-{self._widget_counter}"

    def _log(self, renderable) -> None:
        """Append a renderable to the output scroll area."""
        scroll = self.query_one("#output-scroll", VerticalScroll)
        scroll.mount(Static(renderable, id=self._next_id()))
        scroll.scroll_end(animate=False)

    # ============================================================
    # Lifecycle
    # ============================================================

    def on_mount(self) -> None:
        self._init_services()
        self._update_status()
        self._show_welcome()
        self.query_one("#user-input", Input).focus()

    def _init_services(self) -> None:
        try:
            service = BedrockService()
            self._ctx = create_session_context(
                self.working_directory, service,
                store=SessionStore(), session_name=self.session_name,
            )
            self._driver = SessionDriver(self._ctx, on_event=self._handle_agent_event)
        except BedrockError as e:
            self._log(Text.from_markup(
                f"\n   [bold #f85149]✗ Failed to initialize: {rich_escape(str(e))}[/bold #f85149]"
            ))

    def _show_welcome(self) -> None:
        self._log(Text.from_markup(
            "\n[bold #58a6ff]bedrock[/bold #58a6ff][bold #f0f6fc] pilot[/bold #f0f6fc]\n"
        ))
        if self._ctx is None:
            return
        session = self._ctx.session
        self._log(Text.from_markup(
            f"[#8b949e]{rich_escape(self._ctx.service.model_id)}[/#8b949e]  "
            f"[#6e7681]{rich_escape(get_credentials_info())}[/#6e7681]"
        ))
        self._log(Text(f"dir: {self.working_directory}", style="#6e7681"))
        resumed = f" (resumed, {session.message_count} messages)" if session.history else ""
        self._log(Text(f"session: {session.name}{resumed}", style="#6e7681"))
        self._log(Text.from_markup(
            "\n[#484f58]Type a message to begin  ·  /help for commands  ·  Ctrl+C to quit[/#484f58]\n"
        ))

    # ============================================================
    # Status Bar
    # ============================================================

    def _update_status(self) -> None:
        status = self.query_one("#status-bar", Static)
        if self._ctx is None:
            status.update("not connected")
            return
        session = self._ctx.session
        parts = [self._ctx.service.model_id, f"tokens: {session.total_tokens:,}", session.name[:20]]
        if self._driver and self._driver.active_spec:
            parts.append(f"spec: {self._driver.active_spec.title[:20]}")
        if self._ctx.watcher is not None and self._ctx.watcher.is_running():
            parts.append("watching")
        if self.is_running:
            frame = SPINNER_FRAMES[self._spinner_idx % len(SPINNER_FRAMES)]
            secs = int(time.time() - self._task_start_time) if self._task_start_time else 0
            parts.append(f"{frame} {secs}s")
        status.update(" · ".join(parts))

    def _start_spinner(self) -> None:
        self._spinner_idx = 0
        self._task_start_time = time.time()
        self._spinner_timer = self.set_interval(0.1, self._tick_spinner)

    def _stop_spinner(self) -> None:
        if self._spinner_timer:
            self._spinner_timer.stop()
            self._spinner_timer = None
        self._task_start_time = None

    def _tick_spinner(self) -> None:
        self._spinner_idx += 1
        self._update_status()

    # ============================================================
    # Input Handling
    # ============================================================

    @on(Input.Submitted, "#user-input")
    async def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value.strip()
        self.query_one("#user-input", Input).value = ""
        if not text:
            return
        if self._driver is None:
            self._log(Text("   Not connected to Bedrock. Check your AWS credentials.", style="#f85149"))
            return
        if self.is_running:
            self._log(Text("   Still working on the previous request", style="italic #e3b341"))
            return
        self._log(Text.from_markup(f"\n[bold #58a6ff]❯[/bold #58a6ff] {rich_escape(text)}"))
        self._run_line(text)

    @work(thread=False)
    async def _run_line(self, line: str) -> None:
        self.is_running = True
        self._start_spinner()
        try:
            reply = await self._driver.handle(line)
        finally:
            self.is_running = False
            self._stop_spinner()
            self._update_status()
        if reply:
            if line.startswith("/"):
                self._log(Text(reply, style="#c9d1d9"))
            else:
                self._log(Markdown(reply))
        if self._driver.should_exit:
            self._ctx.shutdown()
            self.exit()

    async def _handle_agent_event(self, event: AgentEvent) -> None:
        # The driver returns the summary as the reply
        if event.type == "summary":
            return
        if event.type == "tool_call":
            icon = TOOL_ICONS.get(event.content, "• ")
            data = event.data or {}
            target = ""
            args = data.get("input") or {}
            for key in ("path", "command", "pattern", "query"):
                if key in args:
                    target = str(args[key])[:80]
                    break
            self._log(Text.from_markup(
                f"   [#6e7681]{icon}{rich_escape(event.content)}[/#6e7681] [#8b949e]{rich_escape(target)}[/#8b949e]"
            ))
            return
        if event.type == "tool_result":
            data = event.data or {}
            style = "#3fb950" if data.get("success", True) else "#f85149"
            first = event.content.splitlines()[0][:120] if event.content else ""
            self._log(Text(f"     → {first}", style=style))
            return
        style = EVENT_STYLES.get(event.type, "#c9d1d9")
        self._log(Text(f"   {event.content}", style=style))

    # ============================================================
    # Actions
    # ============================================================

    def action_quit_app(self) -> None:
        if self._ctx is not None:
            self._ctx.persist()
            self._ctx.shutdown()
        self.exit()

    def action_clear_screen(self) -> None:
        self.query_one("#output-scroll", VerticalScroll).remove_children()


# ============================================================
# Entry Point
# ============================================================

def main():
    parser = argparse.ArgumentParser(
        description="Bedrock Pilot - terminal coding assistant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  bedrock-pilot                     Run in current directory
  bedrock-pilot -d ~/my-project     Run in a specific project directory
  bedrock-pilot -s refactor         Resume (or start) the session named "refactor"
        """,
    )
    parser.add_argument(
        "-d", "--directory",
        default=".",
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "-s", "--session",
        default=None,
        help="Session name to resume or create (default: most recent)",
    )
    args = parser.parse_args()

    working_dir = os.path.abspath(args.directory)
    if not os.path.isdir(working_dir):
        print(f"Error: {working_dir} is not a directory")
        sys.exit(1)

    app = BedrockPilotApp(working_directory=working_dir, session_name=args.session)
    app.run()


if __name__ == "__main__":
    main()
