"""Pydantic models for API requests and responses."""

from .responses import AssistantQueryRequest, ToolInfo

__all__ = ["AssistantQueryRequest", "ToolInfo"]
