"""
Notion property and block builders.

Pure functions turning a detected task into the properties and page content
sent to pages.create.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional

from threadrouter.integrations.base import SinkContext
from threadrouter.models.records import NotionFieldRule
from threadrouter.models.tasks import DetectedTask
from threadrouter.utils.helpers import truncate

logger = logging.getLogger(__name__)

# Notion rejects rich text longer than this per text object
TEXT_LIMIT = 2000

# Task fields that may be mapped onto database properties
MAPPABLE_FIELDS = ("topic", "priority", "type", "assignee", "due_date", "tags")


def _text(content: str, link: Optional[str] = None) -> Dict[str, Any]:
    text: Dict[str, Any] = {"content": truncate(content, TEXT_LIMIT)}
    if link:
        text["link"] = {"url": link}
    return {"type": "text", "text": text}


def _block(block_type: str, rich_text: List[Dict[str, Any]], **extra) -> Dict[str, Any]:
    return {
        "object": "block",
        "type": block_type,
        block_type: {"rich_text": rich_text, **extra},
    }


def _divider() -> Dict[str, Any]:
    return {"object": "block", "type": "divider", "divider": {}}


def format_notion_property(value: Any, property_type: str) -> Optional[Dict[str, Any]]:
    """
    Format a value for a Notion property of the given type.

    Unknown types fall back to rich_text. Returns None when the value
    cannot be represented (e.g. a people property without user IDs).
    """
    if property_type == "title":
        return {"title": [{"text": {"content": truncate(str(value), TEXT_LIMIT)}}]}

    if property_type == "number":
        try:
            return {"number": float(value)}
        except (TypeError, ValueError):
            return {"number": 0}

    if property_type == "select":
        return {"select": {"name": str(value)}}

    if property_type == "status":
        return {"status": {"name": str(value)}}

    if property_type == "multi_select":
        values = value if isinstance(value, (list, tuple)) else [value]
        return {"multi_select": [{"name": str(v)} for v in values]}

    if property_type == "date":
        start = value.isoformat() if isinstance(value, (date, datetime)) else str(value)
        return {"date": {"start": start}}

    if property_type == "checkbox":
        return {"checkbox": bool(value)}

    if property_type in ("url", "email", "phone_number"):
        return {property_type: str(value)}

    if property_type == "people":
        ids = value if isinstance(value, (list, tuple)) else [value]
        valid = [str(i) for i in ids if i is not None]
        if not valid:
            return None
        return {"people": [{"object": "user", "id": i} for i in valid]}

    return {"rich_text": [{"text": {"content": truncate(str(value), TEXT_LIMIT)}}]}


def _map_value(value: Any, value_map: Mapping[str, str]) -> Any:
    if not value_map:
        return value
    if isinstance(value, list):
        return [value_map.get(str(v).lower(), value_map.get(str(v), v)) for v in value]
    key = str(value)
    return value_map.get(key.lower(), value_map.get(key, value))


def build_task_properties(
    task: DetectedTask,
    field_mapping: Mapping[str, NotionFieldRule],
    assignee_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Page properties: the Name title plus every mapped task field that has a
    value. A people property is only set from an already-resolved user ID.
    """
    properties: Dict[str, Any] = {"Name": format_notion_property(task.title, "title")}

    for field_name in MAPPABLE_FIELDS:
        rule = field_mapping.get(field_name)
        if rule is None:
            continue

        value = getattr(task, field_name)
        if value is None:
            continue
        if hasattr(value, "value"):
            value = value.value

        if rule.property_type == "people":
            if not assignee_id:
                logger.warning(f"No resolved Notion user for {field_name}: {value}")
                continue
            value = assignee_id
        elif rule.property_type in ("select", "multi_select", "status"):
            value = _map_value(value, rule.value_map)

        formatted = format_notion_property(value, rule.property_type)
        if formatted is not None:
            properties[rule.property] = formatted

    return properties


def build_task_blocks(task: DetectedTask, context: SinkContext) -> List[Dict[str, Any]]:
    """Page body: summary, key points, participants, description, metadata, link back."""
    blocks: List[Dict[str, Any]] = []
    summary = context.summary

    if summary and summary.summary:
        blocks.append(
            _block("callout", [_text(f"AI Summary: {summary.summary}")], icon={"emoji": "🤖"})
        )

    action_items = task.action_items or (summary.key_points if summary else [])
    if action_items:
        blocks.append(_block("heading_3", [_text("📋 Key Action Items")]))
        for item in action_items:
            blocks.append(_block("to_do", [_text(item)], checked=False))

    participants = context.thread.participants
    if participants:
        rich_text: List[Dict[str, Any]] = [_text("👥 Participants: ")]
        for i, handle in enumerate(participants):
            user_id = context.mentions.get(handle)
            if user_id:
                rich_text.append(
                    {"type": "mention", "mention": {"type": "user", "user": {"id": user_id}}}
                )
            else:
                rich_text.append(_text(f"@{handle}"))
            if i < len(participants) - 1:
                rich_text.append(_text(", "))
        blocks.append(_block("paragraph", rich_text))

    blocks.append(_divider())
    blocks.append(_block("heading_2", [_text("Thread Content")]))
    blocks.append(_block("paragraph", [_text(task.description)]))
    blocks.append(_divider())
    blocks.append(_block("heading_2", [_text("Metadata")]))

    metadata = [
        f"Source: {context.source_platform}",
        f"Thread ID: {context.thread.id}",
        f"Thread Size: {context.thread.message_count} messages",
        f"Created By: @{context.thread.root_message.author_handle}",
    ]
    if task.priority:
        metadata.append(f"Priority: {task.priority.value}")
    if task.topic:
        metadata.append(f"Topic: {task.topic}")
    if summary and summary.sentiment:
        metadata.append(f"Sentiment: {summary.sentiment.value}")
    if summary and summary.confidence is not None:
        metadata.append(f"Confidence: {round(summary.confidence * 100)}%")
    if task.assignee:
        metadata.append(f"Assignee: @{task.assignee}")
    if task.tags:
        metadata.append(f"Tags: {', '.join(task.tags)}")

    for item in metadata:
        blocks.append(_block("bulleted_list_item", [_text(item)]))

    if context.source_url:
        blocks.append(_divider())
        link = _text(
            f"View Discussion in {context.source_platform.capitalize()}",
            link=context.source_url,
        )
        link["annotations"] = {"bold": True, "color": "blue"}
        blocks.append(_block("paragraph", [_text("🔗 "), link]))

    return blocks
