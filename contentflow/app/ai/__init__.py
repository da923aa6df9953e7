"""
AI tool-calling conversation: messages, tool declarations, tool execution and the turn loop.
"""

from .conversation import ConversationManager  # noqa: F401
from .tools import ToolManager, ToolMetadata, ToolSet  # noqa: F401
from .tool_executor import ToolExecutor  # noqa: F401
from .conversation_loop import AIConversationLoop, AgentMode, LoopResult  # noqa: F401
