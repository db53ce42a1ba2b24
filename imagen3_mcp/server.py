"""MCP server for Google Imagen 3 image generation.

This server exposes a single ``generate_image`` tool to AI agents via MCP.
Images are returned inline as image content; optionally a copy is written to
``IMAGEN_OUTPUT_DIR``.
"""
from __future__ import annotations

import asyncio
import sys
from typing import Any, Dict, List, Optional, Union

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.tools.tool import Tool, ToolResult
from fastmcp.utilities.logging import get_logger
from mcp.types import ImageContent, TextContent
from pydantic import Field

from .config import ConfigurationError, Settings, load_settings
from .dispatcher import ToolDispatcher, ToolResponse
from .storage import ImageStore

logger = get_logger(__name__)

SERVER_NAME = "imagen3-mcp"

INSTRUCTIONS = """
Use the generate_image tool to create images from English text descriptions.
The image is returned inline. Request up to 4 samples with sample_count and pick
a shape with aspect_ratio.

<Imagen_prompt_guide>
## Basics
A good prompt is descriptive and clear. Think about three things:
1. Subject: the object, person, animal or scenery you want.
2. Context and background: where the subject is placed (studio with a white
   background, outdoors, indoors).
3. Style: general (painting, photograph, sketch) or specific (pastel painting,
   charcoal drawing, isometric 3D). Styles can be combined.
Example: A sketch of a modern apartment building surrounded by skyscrapers.
Start with the core idea, then refine it by adding details.

## Text in images
Keep text to 25 characters or less, use at most three distinct phrases, and
describe font style and size in general terms.
Example: A poster with the text "Summerland" in bold font as a title.

## Photography
Start with "A photo of ..." and add modifiers:
- Proximity: close-up, taken from far away
- Position: aerial, from below
- Lighting: natural, dramatic, warm, cold
- Camera settings: motion blur, soft focus, bokeh, portrait
- Lens: 35mm, 50mm, fisheye, wide angle, macro
- Film: black and white, polaroid

## Illustration and art
"A painting of ...", "A sketch of ...", "... made of ...",
"... in the shape of ...", "... in the style of <art movement>".

## Quality modifiers
high-quality, beautiful, stylized; for photos 4K, HDR, studio photo; for art
"by a professional", detailed.

## Aspect ratios
- 1:1 (default) square, social media posts
- 4:3 fullscreen, media and film
- 3:4 portrait fullscreen, captures more vertically
- 16:9 widescreen, landscapes
- 9:16 portrait, tall subjects such as buildings, trees, waterfalls
</Imagen_prompt_guide>
""".strip()


def _save_images(store: ImageStore, response: ToolResponse) -> str:
    try:
        paths = [store.save(image) for image in response.images]
    except OSError as exc:
        logger.warning("Could not save generated image to %s: %s", store.directory, exc)
        return f"The image could not be saved to {store.directory}: {exc}"
    return "Saved to: " + ", ".join(str(path) for path in paths)


async def handle_generate_image(
    dispatcher: ToolDispatcher,
    arguments: Dict[str, Any],
    store: Optional[ImageStore] = None,
) -> List[Union[ImageContent, TextContent]]:
    """Run one tool call and shape it for FastMCP.

    Failures are raised as ToolError, which FastMCP reports to the host as a
    tool result with ``isError`` set rather than a transport fault.
    """
    response = await dispatcher.ainvoke(arguments)
    if response.is_error:
        raise ToolError(response.error_text())

    content: List[Union[ImageContent, TextContent]] = list(response.to_content())
    if store is not None:
        saved = await asyncio.to_thread(_save_images, store, response)
        content.append(TextContent(type="text", text=saved))
    return content


class GenerateImageTool(Tool):
    """FastMCP tool that hands the raw call arguments to the dispatcher.

    The advertised ``parameters`` are the dispatcher's input schema, and
    argument checking is left to ``validate_arguments`` so that bad input
    comes back as a ``ValidationError: ...`` tool error.
    """

    dispatcher: Any = Field(exclude=True)
    store: Optional[Any] = Field(default=None, exclude=True)

    @classmethod
    def from_dispatcher(cls, dispatcher: ToolDispatcher, store: Optional[ImageStore] = None) -> "GenerateImageTool":
        spec = dispatcher.describe()
        return cls(
            name=spec.name,
            description=spec.description,
            parameters=spec.input_schema,
            dispatcher=dispatcher,
            store=store,
        )

    async def run(self, arguments: Dict[str, Any]) -> ToolResult:
        content = await handle_generate_image(self.dispatcher, arguments, self.store)
        return ToolResult(content=content)


def create_server(settings: Settings, dispatcher: Optional[ToolDispatcher] = None) -> FastMCP:
    """Build the FastMCP server with the generate_image tool registered."""
    dispatcher = dispatcher or ToolDispatcher.from_settings(settings)
    store = ImageStore(settings.output_dir) if settings.output_dir else None

    mcp = FastMCP(SERVER_NAME, instructions=INSTRUCTIONS)
    mcp.add_tool(GenerateImageTool.from_dispatcher(dispatcher, store))
    return mcp


def main() -> None:
    """Load settings and serve over stdio. Exits if the API key is missing."""
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        sys.exit(f"Error: {exc}")

    mcp = create_server(settings)
    mcp.run(show_banner=False, log_level=settings.log_level)


if __name__ == "__main__":
    main()
