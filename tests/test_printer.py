import pytest
from rich.console import Console

from llmgate.printer import RichStreamPrinter, parse_sse_lines
from llmgate.stream import DONE_LINE, sse_pack
from tests.conftest import agen, collect


class TestRichStreamPrinter:

    @pytest.mark.asyncio
    async def test_collects_reasoning_and_answer(self):
        console = Console(record=True, width=80, force_terminal=False)
        printer = RichStreamPrinter(console=console)
        events = agen([
            {"token": "", "reasoning": "Let me think."},
            {"token": "", "reasoning": ""},
            {"token": "The capital is ", "reasoning": ""},
            {"token": "**Paris**.", "reasoning": ""},
        ])

        result = await printer.print_stream(events)

        assert result == {"text": "The capital is **Paris**.", "reasoning": "Let me think."}
        assert printer.get_full_text() == "The capital is **Paris**."
        output = console.export_text()
        assert "Paris" in output
        assert "Final Response" in output

    @pytest.mark.asyncio
    async def test_parse_sse_lines(self):
        lines = agen([sse_pack({"token": "a", "reasoning": ""}), DONE_LINE, sse_pack({"token": "late", "reasoning": ""})])
        assert await collect(parse_sse_lines(lines)) == [{"token": "a", "reasoning": ""}]
