"""
Request and response models for the assistant API.

QueryResponse itself lives with the conversation driver; these models cover
the HTTP envelope around it.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from mrp_assistant.services.ai.schema import (
    AssistantOptions,
    CamelModel,
    ConversationMessage,
    ProviderCredentials,
)


class AssistantQueryRequest(CamelModel):
    """POST /assistant/query body."""
    query: str = Field(..., min_length=1, max_length=4000)
    history: List[ConversationMessage] = Field(default_factory=list)
    credentials: Optional[ProviderCredentials] = None
    options: Optional[AssistantOptions] = None


class ToolInfo(BaseModel):
    """Tool as listed by GET /assistant/tools."""
    name: str
    description: str
    mutating: bool = False
    parameters: Dict[str, Any]
