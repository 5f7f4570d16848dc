"""
Emoji and link formatting.

Slack writes emoji as :shortcodes:, which other platforms render literally.
Text leaving Slack is converted to Unicode, and replies posted as Notion
comments are split into rich text with clickable links.
"""

import re
from typing import Any, Dict, List, Optional

SLACK_EMOJI = {
    ":white_check_mark:": "✅",
    ":heavy_check_mark:": "✔️",
    ":link:": "🔗",
    ":eyes:": "👀",
    ":hourglass:": "⏳",
    ":hourglass_flowing_sand:": "⏳",
    ":robot_face:": "🤖",
    ":x:": "❌",
    ":arrows_counterclockwise:": "🔄",
    ":warning:": "⚠️",
    ":fire:": "🔥",
    ":sparkles:": "✨",
    ":+1:": "👍",
    ":thumbsup:": "👍",
    ":-1:": "👎",
    ":thumbsdown:": "👎",
    ":rocket:": "🚀",
    ":bulb:": "💡",
    ":memo:": "📝",
    ":pencil2:": "✏️",
    ":pushpin:": "📌",
    ":calendar:": "📆",
    ":bell:": "🔔",
    ":star:": "⭐",
    ":heart:": "❤️",
    ":question:": "❓",
    ":exclamation:": "❗",
    ":point_right:": "👉",
    ":point_left:": "👈",
    ":bug:": "🐛",
    ":tada:": "🎉",
    ":100:": "💯",
}

SHORTCODE_PATTERN = re.compile(r":[a-z0-9_+\-]+:")
URL_PATTERN = re.compile(r"https?://[^\s<>()]+")

# Notion rejects rich text items longer than this
NOTION_TEXT_LIMIT = 2000


def convert_slack_emojis(text: str) -> str:
    """Replace known Slack :shortcodes: with Unicode; unknown codes are kept."""
    if not text:
        return text
    return SHORTCODE_PATTERN.sub(lambda m: SLACK_EMOJI.get(m.group(0), m.group(0)), text)


def _text_items(content: str, url: Optional[str] = None) -> List[Dict[str, Any]]:
    items = []
    for start in range(0, len(content), NOTION_TEXT_LIMIT):
        text: Dict[str, Any] = {"content": content[start:start + NOTION_TEXT_LIMIT]}
        if url:
            text["link"] = {"url": url}
        items.append({"type": "text", "text": text})
    return items


def to_notion_rich_text(text: str) -> List[Dict[str, Any]]:
    """
    Notion rich text for a plain message.

    Emoji shortcodes are converted and every http(s) URL becomes a link.

    Example:
        ":white_check_mark: Done :link: https://x.test/1" yields the text
        "✅ Done 🔗 " followed by the URL as a linked item.
    """
    converted = convert_slack_emojis(text or "")
    items: List[Dict[str, Any]] = []
    last = 0
    for match in URL_PATTERN.finditer(converted):
        if match.start() > last:
            items.extend(_text_items(converted[last:match.start()]))
        url = match.group(0)
        items.extend(_text_items(url, url=url))
        last = match.end()
    if last < len(converted):
        items.extend(_text_items(converted[last:]))
    return items
