"""Tests for the FastMCP wiring of the generate_image tool."""
# pylint: disable=missing-function-docstring

import base64
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from fastmcp import Client, FastMCP
from fastmcp.exceptions import ToolError

from imagen3_mcp import server
from imagen3_mcp.config import ConfigurationError, Credentials, Settings
from imagen3_mcp.core import ErrorKind, GeneratedImage, GenerationFailure, GenerationSuccess
from imagen3_mcp.dispatcher import ToolDispatcher, describe
from imagen3_mcp.storage import ImageStore

CREDENTIALS = Credentials(api_key="test-key")
PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-png-body"


class HandleGenerateImageTests(unittest.IsolatedAsyncioTestCase):
    """Tool responses are shaped for FastMCP."""

    def setUp(self):
        self.client = Mock()
        self.dispatcher = ToolDispatcher(self.client, CREDENTIALS, deadline=5)

    async def test_success_returns_image_content(self):
        self.client.generate.return_value = GenerationSuccess(images=(GeneratedImage(PNG_BYTES, "image/png"),))

        content = await server.handle_generate_image(self.dispatcher, {"prompt": "a running dog"})

        self.assertEqual(len(content), 1)
        self.assertEqual(content[0].type, "image")
        self.assertEqual(content[0].mimeType, "image/png")
        self.assertEqual(base64.b64decode(content[0].data), PNG_BYTES)

    async def test_failure_raises_tool_error_with_kind(self):
        self.client.generate.return_value = GenerationFailure(
            ErrorKind.REQUEST_REJECTED, "Image service rejected the request (HTTP 403): PERMISSION_DENIED", 403
        )

        with self.assertRaises(ToolError) as ctx:
            await server.handle_generate_image(self.dispatcher, {"prompt": "a running dog"})

        self.assertTrue(str(ctx.exception).startswith("RequestRejected: "))

    async def test_validation_failure_makes_no_call(self):
        with self.assertRaises(ToolError) as ctx:
            await server.handle_generate_image(self.dispatcher, {"prompt": ""})

        self.assertTrue(str(ctx.exception).startswith("ValidationError: "))
        self.client.generate.assert_not_called()

    async def test_saves_copy_when_store_configured(self):
        self.client.generate.return_value = GenerationSuccess(images=(GeneratedImage(PNG_BYTES, "image/png"),))

        with tempfile.TemporaryDirectory() as tmp:
            content = await server.handle_generate_image(
                self.dispatcher, {"prompt": "a running dog"}, ImageStore(Path(tmp) / "images")
            )
            saved = list((Path(tmp) / "images").iterdir())

            self.assertEqual([c.type for c in content], ["image", "text"])
            self.assertEqual(len(saved), 1)
            self.assertEqual(saved[0].read_bytes(), PNG_BYTES)
            self.assertIn(str(saved[0].absolute()), content[1].text)

    async def test_save_failure_still_returns_image(self):
        self.client.generate.return_value = GenerationSuccess(images=(GeneratedImage(PNG_BYTES, "image/png"),))

        with tempfile.TemporaryDirectory() as tmp:
            blocker = Path(tmp) / "not-a-dir"
            blocker.write_text("file in the way")
            with self.assertLogs(server.logger, level="WARNING"):
                content = await server.handle_generate_image(
                    self.dispatcher, {"prompt": "a running dog"}, ImageStore(blocker)
                )

        self.assertEqual(content[0].type, "image")
        self.assertIn("could not be saved", content[1].text)

    async def test_save_runs_off_the_event_loop_thread(self):
        self.client.generate.return_value = GenerationSuccess(images=(GeneratedImage(PNG_BYTES, "image/png"),))
        saving_threads = []

        class _RecordingStore(ImageStore):
            def save(self, image):
                saving_threads.append(threading.get_ident())
                return super().save(image)

        with tempfile.TemporaryDirectory() as tmp:
            await server.handle_generate_image(self.dispatcher, {"prompt": "a running dog"}, _RecordingStore(tmp))

        self.assertEqual(len(saving_threads), 1)
        self.assertNotEqual(saving_threads[0], threading.get_ident())


class McpClientTests(unittest.IsolatedAsyncioTestCase):
    """The registered tool as a host sees it over an in-memory MCP session."""

    def setUp(self):
        self.client = Mock()
        self.client.generate.return_value = GenerationSuccess(images=(GeneratedImage(PNG_BYTES, "image/png"),))
        dispatcher = ToolDispatcher(self.client, CREDENTIALS, deadline=5)
        self.mcp = server.create_server(Settings(credentials=CREDENTIALS), dispatcher)

    async def _call(self, arguments):
        async with Client(self.mcp) as client:
            return await client.call_tool("generate_image", arguments, raise_on_error=False)

    async def test_lists_tool_with_dispatcher_schema(self):
        expected = describe()

        async with Client(self.mcp) as client:
            tools = await client.list_tools()

        self.assertEqual([tool.name for tool in tools], ["generate_image"])
        self.assertEqual(tools[0].description, expected.description)
        self.assertEqual(tools[0].inputSchema["properties"], expected.input_schema["properties"])
        self.assertEqual(tools[0].inputSchema["required"], ["prompt"])
        self.assertEqual(tools[0].inputSchema["properties"]["prompt"]["minLength"], 1)

    async def test_success_returns_one_image_block(self):
        result = await self._call({"prompt": "a running dog"})

        self.assertFalse(result.is_error)
        self.assertEqual([block.type for block in result.content], ["image"])
        self.assertEqual(result.content[0].mimeType, "image/png")
        self.assertEqual(base64.b64decode(result.content[0].data), PNG_BYTES)

    async def test_upstream_failure_is_error_result(self):
        self.client.generate.return_value = GenerationFailure(ErrorKind.REQUEST_REJECTED, "nope", 403)

        result = await self._call({"prompt": "a running dog"})

        self.assertTrue(result.is_error)
        self.assertEqual(result.content[0].text, "RequestRejected: nope")

    async def test_invalid_arguments_reach_dispatcher_validation(self):
        cases = {
            "missing prompt": {},
            "empty prompt": {"prompt": ""},
            "too many samples": {"prompt": "a running dog", "sample_count": 9},
            "unknown argument": {"prompt": "a running dog", "style": "noir"},
            "unsupported ratio": {"prompt": "a running dog", "aspect_ratio": "2:1"},
        }
        for label, arguments in cases.items():
            with self.subTest(label):
                result = await self._call(arguments)

                self.assertTrue(result.is_error)
                self.assertTrue(result.content[0].text.startswith("ValidationError: "), result.content[0].text)
        self.client.generate.assert_not_called()

    async def test_null_optional_argument_uses_default(self):
        result = await self._call({"prompt": "a running dog", "aspect_ratio": None, "sample_count": None})

        self.assertFalse(result.is_error)
        image_request = self.client.generate.call_args[0][0]
        self.assertEqual(image_request.aspect_ratio, "1:1")
        self.assertEqual(image_request.sample_count, 1)


class CreateServerTests(unittest.TestCase):
    """Server construction and startup."""

    def test_create_server_returns_fastmcp(self):
        mcp = server.create_server(Settings(credentials=CREDENTIALS))
        self.assertIsInstance(mcp, FastMCP)

    @patch("imagen3_mcp.server.load_settings", side_effect=ConfigurationError("GEMINI_API_KEY is not set"))
    def test_main_exits_without_key(self, _load):
        with patch("imagen3_mcp.server.create_server") as create:
            with self.assertRaises(SystemExit) as ctx:
                server.main()

        self.assertIn("GEMINI_API_KEY", str(ctx.exception.code))
        create.assert_not_called()

    @patch("imagen3_mcp.server.create_server")
    @patch("imagen3_mcp.server.load_settings")
    def test_main_runs_stdio_server(self, load, create):
        load.return_value = Settings(credentials=CREDENTIALS, log_level="INFO")

        server.main()

        create.assert_called_once_with(load.return_value)
        create.return_value.run.assert_called_once_with(show_banner=False, log_level="INFO")


if __name__ == "__main__":
    unittest.main()
