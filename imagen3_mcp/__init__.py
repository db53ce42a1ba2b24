"""Imagen 3 MCP Server - Google AI Image Generation.

This package provides an MCP server exposing a single ``generate_image`` tool
backed by Google's Imagen 3 model.
"""

from .config import API_KEY_ENV, ConfigurationError, Credentials, Settings, load_settings
from .core import (
    ErrorKind,
    GeneratedImage,
    GenerationFailure,
    GenerationRequest,
    GenerationSuccess,
    ImageGenerationClient,
    ValidationError,
)
from .dispatcher import ToolDispatcher, ToolResponse, ToolSpec, describe
from .server import create_server, main

__all__ = [
    "API_KEY_ENV",
    "ConfigurationError",
    "Credentials",
    "ErrorKind",
    "GeneratedImage",
    "GenerationFailure",
    "GenerationRequest",
    "GenerationSuccess",
    "ImageGenerationClient",
    "Settings",
    "ToolDispatcher",
    "ToolResponse",
    "ToolSpec",
    "ValidationError",
    "create_server",
    "describe",
    "load_settings",
    "main",
]

__version__ = "0.1.0"
