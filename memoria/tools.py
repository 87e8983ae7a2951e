"""
Tool definitions for memory-aware agents.

This module provides the tools an LLM can call to search, add, update,
delete and list the memories of the user it is talking to.
"""

import logging
from typing import TYPE_CHECKING, Any

from .errors import IndexIntegrityError, MemoriaError
from .memory.models import MemoryContext, MemoryImportance, MemoryType

if TYPE_CHECKING:
    from .memory import MemoryManager

logger = logging.getLogger("memoria.tools")

_TYPE_NAMES = [t.value for t in MemoryType]
_IMPORTANCE_NAMES = [level.name for level in MemoryImportance]


class MemoryToolRegistry:
    """
    Registry of memory tools available to the LLM.

    Bound to one MemoryContext: the model can only ever see and change
    the memories of the conversation it is part of.
    """

    def __init__(
        self,
        memory: "MemoryManager",
        context: MemoryContext,
        search_limit: int = 5,
        enable_writes: bool = True,
    ):
        self.memory = memory
        self.context = context
        self.search_limit = search_limit
        self.enable_writes = enable_writes

    def get_definitions(self) -> list[dict[str, Any]]:
        """
        Get the JSON schema definitions for all available tools.
        """
        tools = [
            {
                "type": "function",
                "function": {
                    "name": "search_memories",
                    "description": "Search what you remember about the user. Use this before answering questions that depend on their preferences, history or facts about them.",
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "query": {
                                "type": "string",
                                "description": "What to look for (e.g. 'food allergies', 'where the user works')"
                            },
                            "limit": {
                                "type": "integer",
                                "description": "Maximum number of memories to return"
                            }
                        },
                        "required": ["query"]
                    }
                }
            },
            {
                "type": "function",
                "function": {
                    "name": "list_memories",
                    "description": "List the most recent memories about the user.",
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "limit": {
                                "type": "integer",
                                "description": "Maximum number of memories to return"
                            }
                        },
                    }
                }
            },
        ]

        if not self.enable_writes:
            return tools

        tools.extend([
            {
                "type": "function",
                "function": {
                    "name": "add_memory",
                    "description": "Remember a durable fact, preference or instruction about the user for future conversations.",
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "content": {
                                "type": "string",
                                "description": "One self-contained sentence (e.g. 'User is allergic to shellfish')"
                            },
                            "type": {
                                "type": "string",
                                "enum": _TYPE_NAMES,
                                "description": "Kind of memory"
                            },
                            "importance": {
                                "type": "string",
                                "enum": _IMPORTANCE_NAMES,
                                "description": "How important this is to remember"
                            }
                        },
                        "required": ["content"]
                    }
                }
            },
            {
                "type": "function",
                "function": {
                    "name": "update_memory",
                    "description": "Correct a memory that is out of date or wrong.",
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "memory_id": {
                                "type": "string",
                                "description": "Id of the memory, as shown by search_memories or list_memories"
                            },
                            "content": {
                                "type": "string",
                                "description": "The corrected memory"
                            }
                        },
                        "required": ["memory_id", "content"]
                    }
                }
            },
            {
                "type": "function",
                "function": {
                    "name": "delete_memory",
                    "description": "Forget a memory, e.g. when the user asks you to or it is no longer true.",
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "memory_id": {
                                "type": "string",
                                "description": "Id of the memory to delete"
                            }
                        },
                        "required": ["memory_id"]
                    }
                }
            },
        ])
        return tools

    async def execute(self, tool_name: str, arguments: dict[str, Any]) -> str:
        """
        Execute a tool by name with arguments.

        Errors are returned to the model as text, except integrity errors
        which mean the store itself is broken.
        """
        logger.info(f"Executing tool: {tool_name} with args: {arguments}")

        try:
            if tool_name == "search_memories":
                query = (arguments.get("query") or "").strip()
                if not query:
                    return "No query provided."
                limit = _as_limit(arguments.get("limit"), self.search_limit)
                results = await self.memory.search(query, self.context, limit=limit)
                if not results:
                    return f"No memories found for: {query}"
                lines = [f"Memories matching '{query}':"]
                for result in results:
                    lines.append(
                        f"- [{result.record.id}] {result.record.content} "
                        f"(similarity {result.similarity:.2f})"
                    )
                return "\n".join(lines)

            elif tool_name == "list_memories":
                limit = _as_limit(arguments.get("limit"), 10)
                records = await self.memory.get_existing_memories(self.context, limit=limit)
                if not records:
                    return "No memories stored yet."
                lines = [f"{len(records)} most recent memories:"]
                for record in records:
                    lines.append(f"- [{record.id}] {record.content} ({record.type.value}, {record.importance.name})")
                return "\n".join(lines)

            elif tool_name == "add_memory" and self.enable_writes:
                record = await self.memory.add_memory(
                    arguments.get("content", ""),
                    self.context,
                    memory_type=MemoryType.parse(arguments.get("type")),
                    importance=MemoryImportance.parse(arguments.get("importance")),
                )
                return f"Remembered [{record.id}]: {record.content}"

            elif tool_name == "update_memory" and self.enable_writes:
                memory_id = arguments.get("memory_id", "")
                record = await self.memory.update_memory(
                    memory_id, self.context, content=arguments.get("content", "")
                )
                return f"Updated [{record.id}]: {record.content}"

            elif tool_name == "delete_memory" and self.enable_writes:
                memory_id = arguments.get("memory_id", "")
                if await self.memory.delete_memory(memory_id, self.context):
                    return f"Deleted memory {memory_id}."
                return f"No memory found with id {memory_id}."

            else:
                return f"Tool {tool_name} not found or not enabled."

        except IndexIntegrityError:
            raise
        except MemoriaError as e:
            logger.error(f"Error executing tool {tool_name}: {e}")
            return f"Error executing tool: {e}"


def _as_limit(value: Any, default: int) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return default
    return max(1, min(limit, 50))
