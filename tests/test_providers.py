import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from openai import APIStatusError

from llmgate.errors import AttachmentProcessingError, UpstreamProtocolError
from llmgate.providers.gemini import (
    GeminiProvider, GeminiStrategy, ReplayPacing, add_citations, clean_title, replay_as_stream,
    split_response
)
from llmgate.providers.groq import GroqProvider, file_manifest
from llmgate.providers.openrouter import OpenRouterProvider, extract_image_urls
from llmgate.stream import iter_events
from tests.conftest import agen, collect

PDF = {"name": "report.pdf", "url": "https://files.example.com/report.pdf", "mime_type": "application/pdf"}
IMAGE = {"name": "cat.png", "url": "https://files.example.com/cat.png", "mime_type": "image/png"}
NO_DELAY = ReplayPacing(word_delay=0, end_delay=0, chunk_delay=0)


def api_status_error(status: int, message: str = "denied") -> APIStatusError:
    request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
    return APIStatusError(message, response=httpx.Response(status, request=request), body=None)


class TestOpenRouterProvider:

    @pytest.mark.asyncio
    async def test_image_attachment_promotes_last_user_message(self):
        provider = OpenRouterProvider(api_key="fake-key")
        messages = [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "What is this?"},
        ]

        converted = await provider.build_messages(messages, [IMAGE])

        assert converted[0] == {"role": "system", "content": "sys"}
        assert converted[1]["content"] == [
            {"type": "text", "text": "What is this?"},
            {"type": "image_url", "image_url": {"url": IMAGE["url"]}},
        ]
        # Input is not mutated
        assert messages[1]["content"] == "What is this?"

    @pytest.mark.asyncio
    @patch("llmgate.providers.base.fetch_as_data_uri", new_callable=AsyncMock)
    async def test_pdf_is_embedded_with_parser_plugin(self, mock_fetch):
        mock_fetch.return_value = "data:application/pdf;base64,JVBERi0="
        provider = OpenRouterProvider(api_key="fake-key")

        request = await provider.build_request(
            [{"role": "user", "content": "Summarize"}],
            "openai/gpt-4o",
            {"files": [PDF]},
        )

        parts = request["messages"][0]["content"]
        assert parts[1] == {
            "type": "file",
            "file": {"filename": "report.pdf", "file_data": "data:application/pdf;base64,JVBERi0="},
        }
        assert request["extra_body"] == {"plugins": [{"id": "file-parser", "pdf": {"engine": "pdf-text"}}]}
        assert request["model"] == "openai/gpt-4o"

    @pytest.mark.asyncio
    @patch("llmgate.providers.base.fetch_as_data_uri", new_callable=AsyncMock)
    async def test_pdf_fetch_failure_becomes_placeholder(self, mock_fetch):
        mock_fetch.side_effect = AttachmentProcessingError("report.pdf", "404")
        provider = OpenRouterProvider(api_key="fake-key")

        converted = await provider.build_messages([{"role": "user", "content": "Summarize"}], [PDF])

        assert converted[0]["content"] == [
            {"type": "text", "text": "Summarize\n\n[Document: report.pdf - Could not be processed]"},
        ]

    @pytest.mark.asyncio
    async def test_search_uses_online_suffix_for_gemini(self):
        provider = OpenRouterProvider(api_key="fake-key")
        request = await provider.build_request(
            [{"role": "user", "content": "news"}], "google/gemini-2.5-flash", {"search_enabled": True}
        )
        assert request["model"] == "google/gemini-2.5-flash:online"
        assert "extra_body" not in request

    @pytest.mark.asyncio
    async def test_search_uses_web_plugin_for_others(self):
        provider = OpenRouterProvider(api_key="fake-key")
        request = await provider.build_request(
            [{"role": "user", "content": "news"}], "openai/gpt-4o", {"search_enabled": True}
        )
        assert request["model"] == "openai/gpt-4o"
        assert request["extra_body"] == {"plugins": [{"id": "web"}]}

    @pytest.mark.asyncio
    async def test_generate_image_extracts_url(self):
        provider = OpenRouterProvider(api_key="fake-key")
        provider.client = MagicMock()
        provider.client.chat.completions.create = AsyncMock(return_value=MagicMock(
            choices=[MagicMock(message=MagicMock(content="Here you go: https://cdn.example.com/out.png"))]
        ))

        urls = await provider.generate_image("a cat")

        assert urls == ["https://cdn.example.com/out.png"]
        kwargs = provider.client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == provider.image_model
        assert kwargs["max_tokens"] == 200

    @pytest.mark.asyncio
    async def test_generate_image_without_url_fails(self):
        provider = OpenRouterProvider(api_key="fake-key")
        provider.client = MagicMock()
        provider.client.chat.completions.create = AsyncMock(return_value=MagicMock(
            choices=[MagicMock(message=MagicMock(content="I cannot draw."))]
        ))

        with pytest.raises(UpstreamProtocolError):
            await provider.generate_image("a cat")

    @pytest.mark.asyncio
    async def test_upstream_status_raises_before_streaming(self):
        provider = OpenRouterProvider(api_key="fake-key")
        provider.client = MagicMock()
        provider.client.chat.completions.with_streaming_response.create.side_effect = api_status_error(402)

        with pytest.raises(UpstreamProtocolError) as exc_info:
            await provider.generate_chat_stream([{"role": "user", "content": "hi"}], "openai/gpt-4o")

        assert exc_info.value.status_code == 402
        assert exc_info.value.error_type == "PAYMENT_REQUIRED"

    @pytest.mark.asyncio
    async def test_stream_yields_raw_body_and_releases_response(self):
        response = MagicMock()
        response.iter_bytes = lambda: agen([b"data: one\n\n", b"data: [DONE]\n\n"])
        context = MagicMock()
        context.__aenter__.return_value = response

        provider = OpenRouterProvider(api_key="fake-key")
        provider.client = MagicMock()
        provider.client.chat.completions.with_streaming_response.create.return_value = context

        stream = await provider.generate_chat_stream([{"role": "user", "content": "hi"}], "openai/gpt-4o")
        chunks = await collect(stream)
        await stream.aclose()

        assert chunks == [b"data: one\n\n", b"data: [DONE]\n\n"]
        context.__aexit__.assert_awaited_once()

    def test_extract_image_urls_strips_trailing_punctuation(self):
        assert extract_image_urls("see https://example.com/render?id=3.") == ["https://example.com/render?id=3"]
        assert extract_image_urls("nothing here") == []


class TestGroqProvider:

    def test_parts_are_flattened_to_text(self):
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": "first"},
                {"type": "image_url", "image_url": {"url": "https://x/y.png"}},
                {"type": "text", "text": "second"},
            ],
        }]
        assert GroqProvider.build_messages(messages) == [{"role": "user", "content": "first second"}]

    def test_manifest_appended_to_last_user_message(self):
        messages = [
            {"role": "user", "content": "old"},
            {"role": "assistant", "content": "reply"},
            {"role": "user", "content": "new"},
        ]
        converted = GroqProvider.build_messages(messages, [PDF, IMAGE])

        assert converted[0]["content"] == "old"
        assert converted[2]["content"] == (
            "new\n\nAttached files:\n- report.pdf (application/pdf)\n- cat.png (image/png)"
        )

    @pytest.mark.asyncio
    async def test_request_parameters(self):
        provider = GroqProvider(api_key="gsk-test")
        request = await provider.build_request([{"role": "user", "content": "hi"}], "qwen/qwen3-32b", {})
        assert request["stream"] is True
        assert request["temperature"] == 0.7
        assert request["max_tokens"] == 4096

    def test_file_manifest_format(self):
        assert file_manifest([IMAGE]) == "\n\nAttached files:\n- cat.png (image/png)"


def web_chunk(uri, title):
    return SimpleNamespace(web=SimpleNamespace(uri=uri, title=title))


def support(end_index, *indices):
    return SimpleNamespace(segment=SimpleNamespace(end_index=end_index), grounding_chunk_indices=list(indices))


class TestCitations:

    def test_later_citation_inserted_first(self):
        text = "A" * 60
        chunks = [web_chunk("https://one.example", "One"), web_chunk("https://two.example", "Two")]

        result = add_citations(text, [support(20, 0), support(50, 1)], chunks)

        first = ' [[1]](https://one.example "One")'
        second = ' [[2]](https://two.example "Two")'
        assert result.startswith("A" * 20 + first + "A" * 30 + second + "A" * 10)
        assert result.endswith(
            "\n\n**Sources:**\n1. [One](https://one.example)\n2. [Two](https://two.example)\n"
        )

    def test_titles_are_sanitized(self):
        assert clean_title('Bad "title" <script>') == "Bad title script"
        assert clean_title(None) == "Source"

    def test_no_supports_leaves_text_unchanged(self):
        assert add_citations("plain", [], [web_chunk("u", "t")]) == "plain"


class TestGeminiReplay:

    @pytest.mark.asyncio
    async def test_reasoning_then_delimiter_then_answer_chunks(self):
        events = await collect(iter_events(
            replay_as_stream("step one", "one two three four five", NO_DELAY)
        ))

        assert events == [
            {"token": "", "reasoning": "step "},
            {"token": "", "reasoning": "one"},
            {"token": "", "reasoning": ""},
            {"token": "one two three ", "reasoning": ""},
            {"token": "four five", "reasoning": ""},
        ]

    def test_split_response_uses_thought_flag(self):
        response = SimpleNamespace(candidates=[SimpleNamespace(
            content=SimpleNamespace(parts=[
                SimpleNamespace(text="thinking", thought=True),
                SimpleNamespace(text="answer", thought=None),
            ]),
            grounding_metadata=None,
        )])
        assert split_response(response) == ("thinking", "answer", None)


class TestGeminiProvider:

    @pytest.mark.parametrize("model,options,expected", [
        ("gemini-2.0-flash-exp", {"search_enabled": True}, GeminiStrategy.SEARCH),
        ("gemini-2.5-pro-preview-06-05", {}, GeminiStrategy.THINKING),
        ("gemini-2.0-flash-lite-exp", {}, GeminiStrategy.PLAIN),
    ])
    def test_select_strategy(self, model, options, expected):
        assert GeminiProvider.select_strategy(model, options) is expected

    @pytest.mark.asyncio
    @patch("llmgate.providers.gemini.genai")
    async def test_convert_messages_roles(self, mock_genai):
        provider = GeminiProvider(api_key="fake-key")
        messages = [
            {"role": "system", "content": "be brief"},
            {"role": "assistant", "content": "im helper"},
            {"role": "user", "content": "hi"},
        ]

        system, contents = await provider.convert_messages(messages)

        assert system == "be brief"
        assert [c.role for c in contents] == ["model", "user"]
        assert contents[0].parts[0].text == "im helper"

    @pytest.mark.asyncio
    @patch("llmgate.providers.gemini.genai")
    async def test_data_uri_image_is_inlined(self, mock_genai):
        provider = GeminiProvider(api_key="fake-key")
        data = base64.b64encode(b"png-bytes").decode()
        messages = [{"role": "user", "content": [
            {"type": "text", "text": "look"},
            {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{data}"}},
        ]}]

        _, contents = await provider.convert_messages(messages)

        inline = contents[0].parts[1].inline_data
        assert inline.data == b"png-bytes"
        assert inline.mime_type == "image/png"

    @pytest.mark.asyncio
    @patch("llmgate.providers.gemini.genai")
    async def test_remote_image_not_fetched_for_plain_stream(self, mock_genai):
        provider = GeminiProvider(api_key="fake-key")
        messages = [{"role": "user", "content": [
            {"type": "image_url", "image_url": {"url": "https://x.example/cat.png"}},
        ]}]

        _, contents = await provider.convert_messages(messages, inline_remote=False)

        assert contents[0].parts[0].text == "[Image: https://x.example/cat.png]"

    @pytest.mark.asyncio
    @patch("llmgate.providers.gemini.genai")
    async def test_remote_image_is_downloaded_and_inlined(self, mock_genai):
        def handler(request):
            assert request.url == "https://x.example/cat.png"
            return httpx.Response(200, content=b"png-bytes", headers={"content-type": "image/png"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = GeminiProvider(api_key="fake-key", http_client=client)
            _, contents = await provider.convert_messages([{"role": "user", "content": [
                {"type": "text", "text": "hi"},
                {"type": "image_url", "image_url": {"url": "https://x.example/cat.png"}},
            ]}])

        inline = contents[0].parts[1].inline_data
        assert inline.data == b"png-bytes"
        assert inline.mime_type == "image/png"

    @pytest.mark.asyncio
    @patch("llmgate.providers.gemini.genai")
    async def test_unreachable_image_becomes_placeholder(self, mock_genai, caplog):
        transport = httpx.MockTransport(lambda request: httpx.Response(404))

        async with httpx.AsyncClient(transport=transport) as client:
            provider = GeminiProvider(api_key="fake-key", http_client=client)
            _, contents = await provider.convert_messages([{"role": "user", "content": [
                {"type": "text", "text": "hi"},
                {"type": "image_url", "image_url": {"url": "https://x.example/gone.png"}},
            ]}])

        assert contents[0].parts[0].text == "hi"
        assert contents[0].parts[1].text == "[Image could not be processed]"
        assert "Failed to process image" in caplog.text

    @pytest.mark.asyncio
    @patch("llmgate.providers.gemini.genai")
    async def test_thinking_response_is_replayed(self, mock_genai):
        provider = GeminiProvider(api_key="fake-key", pacing=NO_DELAY)
        provider.client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(candidates=[
            SimpleNamespace(
                content=SimpleNamespace(parts=[
                    SimpleNamespace(text="hmm", thought=True),
                    SimpleNamespace(text="Paris", thought=False),
                ]),
                grounding_metadata=None,
            )
        ]))

        stream = await provider.generate_chat_stream(
            [{"role": "user", "content": "capital of France?"}], "gemini-2.5-pro-preview-06-05", {}
        )
        events = await collect(iter_events(stream))

        assert events == [
            {"token": "", "reasoning": "hmm"},
            {"token": "", "reasoning": ""},
            {"token": "Paris", "reasoning": ""},
        ]
        config = provider.client.aio.models.generate_content.call_args.kwargs["config"]
        assert config.thinking_config.include_thoughts is True

    @pytest.mark.asyncio
    @patch("llmgate.providers.gemini.genai")
    async def test_search_response_is_replayed_with_citations(self, mock_genai):
        provider = GeminiProvider(api_key="fake-key", pacing=NO_DELAY)
        provider.client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(candidates=[
            SimpleNamespace(
                content=SimpleNamespace(parts=[SimpleNamespace(text="Hello world", thought=False)]),
                grounding_metadata=SimpleNamespace(
                    grounding_supports=[support(5, 0)],
                    grounding_chunks=[web_chunk("https://a.example", "A")],
                ),
            )
        ]))

        stream = await provider.generate_chat_stream(
            [{"role": "user", "content": "say hello"}], "gemini-2.5-flash-preview-05-20", {"search_enabled": True}
        )
        events = await collect(iter_events(stream))

        assert all(e["reasoning"] == "" for e in events)
        assert "".join(e["token"] for e in events) == (
            'Hello [[1]](https://a.example "A") world'
            "\n\n**Sources:**\n1. [A](https://a.example)\n"
        )
        config = provider.client.aio.models.generate_content.call_args.kwargs["config"]
        assert config.tools[0].google_search is not None
        assert config.thinking_config.include_thoughts is True

    @pytest.mark.asyncio
    @patch("llmgate.providers.gemini.genai")
    async def test_failed_strategy_falls_back_to_plain(self, mock_genai, caplog):
        provider = GeminiProvider(api_key="fake-key", pacing=NO_DELAY)
        provider.client.aio.models.generate_content = AsyncMock(side_effect=RuntimeError("boom"))
        provider.client.aio.models.generate_content_stream = AsyncMock(
            return_value=agen([SimpleNamespace(text="Hi"), SimpleNamespace(text=" there")])
        )

        stream = await provider.generate_chat_stream(
            [{"role": "user", "content": "hello"}], "gemini-2.0-flash-exp", {"search_enabled": True}
        )
        events = await collect(iter_events(stream))

        assert [e["token"] for e in events] == ["Hi", " there"]
        assert "falling back to plain streaming" in caplog.text

    @pytest.mark.asyncio
    @patch("llmgate.providers.gemini.genai")
    async def test_generate_image_returns_data_urls(self, mock_genai):
        provider = GeminiProvider(api_key="fake-key")
        part = SimpleNamespace(inline_data=SimpleNamespace(data=b"img", mime_type="image/png"))
        provider.client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(
            candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))]
        ))

        urls = await provider.generate_image("a fox")

        assert urls == [f"data:image/png;base64,{base64.b64encode(b'img').decode()}"]
