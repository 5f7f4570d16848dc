# Notion integration module
from threadrouter.integrations.notion.client import NotionSinkAdapter
from threadrouter.integrations.notion.source import NotionSourceAdapter
from threadrouter.integrations.notion.blocks import (
    format_notion_property,
    build_task_properties,
    build_task_blocks,
)

__all__ = [
    "NotionSinkAdapter",
    "NotionSourceAdapter",
    "format_notion_property",
    "build_task_properties",
    "build_task_blocks",
]
