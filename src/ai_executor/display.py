# display.py
# Terminal rendering of execution events.
#
# This module owns presentation entirely. The engine never formats strings for
# humans; it publishes ExecutionEvents and this sink draws them. Swap the sink
# to change the entire UI.
#
# Colour language:
#   cyan: function boundaries / routing
#   blue: model calls and responses
#   yellow: validation checkpoints and retries
#   magenta: tool calls
#   green: success / confirmed
#   red: failures

import json
from typing import Any

from pydantic import BaseModel
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from ai_executor.models import ExecutionEvent

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        value = value[:max_len] + "…"
    return escape(value)


def _render(value: Any) -> str:
    if isinstance(value, BaseModel):
        return value.model_dump_json(by_alias=True)
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


# ---------------------------------------------------------------------------
# Sink
# ---------------------------------------------------------------------------


class ConsoleEventSink:
    """
    EventSink that prints a compact, colour-coded log of a run.

    `verbose=False` hides the START half of validation/parsing checkpoints.
    """

    def __init__(self, console: Console | None = None, verbose: bool = False) -> None:
        self.console = console or Console()
        self.verbose = verbose

    def publish(self, event: ExecutionEvent) -> None:
        handler = getattr(self, f"_on_{event.type.value.lower()}", None)
        if handler is not None:
            handler(event)
        elif self.verbose:
            self.console.print(f"  [dim]{event.type.value}[/dim]")

    # ------------------------------------------------------------------
    # Function boundaries
    # ------------------------------------------------------------------

    def _on_ai_function_start(self, event: ExecutionEvent) -> None:
        self.console.print()
        self.console.print(Rule(f"[cyan]AI FUNCTION: {event.function_id}[/cyan]", style="cyan"))
        self.console.print(
            Panel(
                f"[white]{_mono(_render(event.data.get('input')), 400)}[/white]",
                title=_label("INPUT", "cyan"),
                border_style="cyan",
                padding=(0, 2),
            )
        )

    def _on_ai_function_end(self, event: ExecutionEvent) -> None:
        self.console.print()
        self.console.print(
            Panel(
                f"[white]{_mono(_render(event.data.get('output')), 2000)}[/white]\n\n"
                f"[dim]{event.data.get('iterations', '?')} iteration(s)[/dim]",
                title=_label("RESULT", "green"),
                border_style="green",
                padding=(1, 2),
            )
        )
        self.console.print()

    def _on_ai_function_error(self, event: ExecutionEvent) -> None:
        self.console.print()
        self.console.print(
            Panel(
                f"[bold white]{_mono(_render(event.data.get('error')), 2000)}[/bold white]",
                title=_label("HALT", "red"),
                border_style="red",
                padding=(0, 2),
            )
        )
        self.console.print()

    # ------------------------------------------------------------------
    # Model calls
    # ------------------------------------------------------------------

    def _on_prompt_compilation_end(self, event: ExecutionEvent) -> None:
        if self.verbose:
            self.console.print(
                Panel(
                    f"[dim white]{_mono(event.data.get('prompt', ''), 2000)}[/dim white]",
                    title=_label("PROMPT", "blue"),
                    border_style="blue",
                    padding=(0, 2),
                )
            )

    def _on_prompt_compilation_error(self, event: ExecutionEvent) -> None:
        self._failure("PROMPT", event)

    def _on_llm_start(self, event: ExecutionEvent) -> None:
        self.console.print()
        self.console.print(
            _label("LLM", "blue"),
            f"[blue] → Calling model (attempt {event.data.get('attempt', 1)})…[/blue]",
        )

    def _on_llm_end(self, event: ExecutionEvent) -> None:
        info = event.data.get("model_info") or {}
        cached = " [dim](cached)[/dim]" if info.get("from_cache") else ""
        self.console.print(
            f"  [blue]↳ Response[/blue]{cached}  [dim white]{_mono(event.data.get('raw_output', ''), 160)}[/dim white]"
        )

    def _on_llm_error(self, event: ExecutionEvent) -> None:
        self._failure("LLM", event)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _on_output_parsing_end(self, event: ExecutionEvent) -> None:
        envelope = event.data.get("envelope")
        kind = getattr(envelope, "type", "?")
        self.console.print(f"  [bold green]✓ Envelope parsed[/bold green]  [dim]_type={kind}[/dim]")

    def _on_output_parsing_error(self, event: ExecutionEvent) -> None:
        self._failure("PARSE", event)

    def _on_input_validation_error(self, event: ExecutionEvent) -> None:
        self._failure("INPUT", event)

    def _on_output_validation_end(self, event: ExecutionEvent) -> None:
        self.console.print(f"  [yellow]↳ Output validated[/yellow]  [dim]{event.data.get('step', '')}[/dim]")

    def _on_output_validation_error(self, event: ExecutionEvent) -> None:
        self._failure("OUTPUT", event)

    def _on_retry_attempt(self, event: ExecutionEvent) -> None:
        data = event.data
        self.console.print(
            _label("RETRY", "yellow"),
            f"[yellow] attempt {data.get('attempt')}/{data.get('max_attempts')} failed; "
            f"retrying in {data.get('delay', 0):.2f}s[/yellow]",
        )

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def _on_tool_start(self, event: ExecutionEvent) -> None:
        self.console.print()
        self.console.print(
            f"  [magenta]Action[/magenta]   [bold white]{event.data.get('name')}[/bold white]"
            f"  [dim]{_mono(_render(event.data.get('input')), 140)}[/dim]"
        )

    def _on_tool_end(self, event: ExecutionEvent) -> None:
        self.console.print(f"  [magenta]Observe[/magenta]  [white]{_mono(_render(event.data.get('output')), 140)}[/white]")

    def _on_tool_error(self, event: ExecutionEvent) -> None:
        self._failure("TOOL", event)

    # ------------------------------------------------------------------

    def _failure(self, tag: str, event: ExecutionEvent) -> None:
        self.console.print(
            f"  [bold red]✗ {tag}[/bold red]  [white]{_mono(_render(event.data.get('error')), 200)}[/white]"
        )


def trace_summary(trace, console: Console | None = None) -> None:
    """Print the step-by-step trace of a finished run."""
    console = console or Console()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="dim",
        show_header=True,
        header_style="bold dim",
        padding=(0, 1),
    )
    table.add_column("Step", justify="center", width=6)
    table.add_column("Target", width=8)
    table.add_column("Tool", width=12)
    table.add_column("Output", style="dim white")

    for index, entry in enumerate(trace.entries, start=1):
        output = f"[red]{_mono(entry.error, 60)}[/red]" if entry.error else _mono(_render(entry.output), 60)
        table.add_row(str(index), entry.target.value, entry.tool_name or "", output)

    console.print(
        Panel(
            table,
            title="[dim]EXECUTION TRACE[/dim]",
            border_style="dim",
            padding=(0, 1),
        )
    )
