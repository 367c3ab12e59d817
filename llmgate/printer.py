"""
Rich stream printer for displaying gateway replies in a terminal.
"""
from typing import AsyncIterator, Dict, Optional, Union

from rich.console import Console, Group
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text

from .stream import iter_events
from .types import StreamEvent


def parse_sse_lines(lines: AsyncIterator[Union[bytes, str]]) -> AsyncIterator[StreamEvent]:
    """Decode the gateway's SSE output back into StreamEvents."""
    return iter_events(lines)


class RichStreamPrinter:
    """
    Live display of a streaming reply using rich.

    Reasoning is shown dimmed above the answer, which is rendered as
    markdown as it arrives.

    Attributes:
        title: Title for the display panel
        code_theme: Theme for code blocks
        inline_code_theme: Theme for inline code
        refresh_rate: Refresh rate for Live display
        show_final_title: Whether to change title to "Final Response" at the end
        border_style: Border style while streaming
    """

    def __init__(
        self,
        title: str = "Streaming Response",
        code_theme: str = "coffee",
        inline_code_theme: str = "monokai",
        refresh_rate: int = 30,
        show_final_title: bool = True,
        border_style: str = "blue",
        console: Optional[Console] = None,
    ):
        self.title = title
        self.code_theme = code_theme
        self.inline_code_theme = inline_code_theme
        self.refresh_rate = refresh_rate
        self.show_final_title = show_final_title
        self.border_style = border_style
        self.console = console or Console()
        self._full_text = ""
        self._reasoning = ""

    async def print_stream(self, events: AsyncIterator[StreamEvent]) -> Dict[str, str]:
        """
        Consume events and keep the panel updated.

        Args:
            events: Async iterator of StreamEvents (see ``parse_sse_lines``)

        Returns:
            ``{"text": ..., "reasoning": ...}`` for the whole reply
        """
        self._full_text = ""
        self._reasoning = ""

        with Live(
            self._render(is_final=False),
            refresh_per_second=self.refresh_rate,
            console=self.console,
        ) as live:
            async for event in events:
                self._reasoning += event.get("reasoning", "")
                self._full_text += event.get("token", "")
                live.update(self._render(is_final=False))
            live.update(self._render(is_final=True))

        return {"text": self._full_text, "reasoning": self._reasoning}

    def _render(self, is_final: bool) -> Panel:
        if is_final and self.show_final_title:
            title = "[bold]Final Response[/bold]"
        else:
            title = f"[bold]{self.title}[/bold]"

        return Panel(
            self._build_content(),
            title=title,
            border_style="green" if is_final else self.border_style,
            padding=(1, 2),
        )

    def _build_content(self):
        parts = []
        if self._reasoning.strip():
            parts.append(Panel(
                Text(self._reasoning.strip(), style="dim italic"),
                title="[dim]Reasoning[/dim]",
                border_style="dim",
            ))
        if self._full_text.strip():
            parts.append(Markdown(
                self._full_text,
                code_theme=self.code_theme,
                inline_code_theme=self.inline_code_theme,
            ))
        if not parts:
            return Text("(waiting for response...)", style="dim italic")
        return Group(*parts)

    def get_full_text(self) -> str:
        """Get the full assembled answer."""
        return self._full_text

    def get_reasoning(self) -> str:
        return self._reasoning
