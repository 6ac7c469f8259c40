"""Rich rendering of engine views for the terminal client."""

from __future__ import annotations

from typing import List, Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..core.schemas import ActionResponse, Choice, RenderedView

console = Console()


def view_panel(view: RenderedView, *, subtitle: Optional[str] = None) -> Panel:
    parts: List[object] = [Text(line) for line in view.body]
    if view.fields:
        table = Table(show_header=False, box=None, pad_edge=False)
        table.add_column(style="bold cyan")
        table.add_column()
        for name, value in view.fields.items():
            table.add_row(name, value)
        parts.append(table)
    if view.choices:
        parts.append(Text(""))
        for number, choice in enumerate(view.choices, start=1):
            style = "dim" if choice.disabled else "green"
            parts.append(Text(f"[{number}] {choice.label}", style=style))
    title = view.title + (" (private)" if view.private else "")
    return Panel(Group(*parts), title=title, subtitle=subtitle, style="white")


class ConsoleNarrator:
    """Prints views and engine responses for a human at the terminal."""

    def __init__(self, out: Console = console) -> None:
        self.console = out

    def show_view(self, view: RenderedView, *, subtitle: Optional[str] = None) -> None:
        self.console.print(view_panel(view, subtitle=subtitle))

    def show_response(self, response: ActionResponse) -> None:
        if response.message:
            style = "bold green" if response.ok else "bold red"
            self.console.print(Text(response.message, style=style))
        if response.view is not None:
            self.show_view(response.view, subtitle=response.session_key)

    def pick(self, view: RenderedView, answer: str) -> Optional[Choice]:
        """Map a typed number (or a raw action id) to one of the view's choices."""
        answer = answer.strip()
        if answer.isdigit():
            index = int(answer) - 1
            if 0 <= index < len(view.choices):
                return view.choices[index]
            return None
        for choice in view.choices:
            if choice.id == answer:
                return choice
        return Choice(id=answer, label=answer) if ":" in answer else None
