"""
Run the gateway in-process and print a streamed reply with the rich printer.
"""
import asyncio

import httpx

from llmgate import ChatGateway, GenerationRequest, RichStreamPrinter, get_settings, parse_sse_lines
from llmgate.logging_config import setup_logging


async def main():
    settings = get_settings()
    setup_logging(settings.log_level)

    request: GenerationRequest = {
        "model_id": "gemini-2.5-flash-preview-05-20",
        "messages": [
            {"role": "user", "content": "introduce yourself in one sentence using markdown syntax."},
        ],
        "search_enabled": False,
        "thinking_enabled": True,
        "attachments": [],
        "think_enabled": False,
    }

    async with httpx.AsyncClient(timeout=settings.fetch_timeout) as http_client:
        gateway = ChatGateway(settings, http_client)
        lines = await gateway.handle(request)
        printer = RichStreamPrinter(title="llmgate")
        await printer.print_stream(parse_sse_lines(lines))


if __name__ == "__main__":
    asyncio.run(main())
