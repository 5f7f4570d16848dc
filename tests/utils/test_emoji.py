"""
Unit Tests for emoji conversion and Notion rich text
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

import pytest

from threadrouter.utils.emoji import (
    NOTION_TEXT_LIMIT,
    convert_slack_emojis,
    to_notion_rich_text,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        (":white_check_mark: Done", "✅ Done"),
        ("Ship it :rocket::tada:", "Ship it 🚀🎉"),
        (":+1: from me", "👍 from me"),
        (":partyparrot: stays", ":partyparrot: stays"),
        ("time 10:30:00", "time 10:30:00"),
        ("", ""),
    ],
)
def test_convert_slack_emojis(text, expected):
    assert convert_slack_emojis(text) == expected


def test_rich_text_without_links():
    assert to_notion_rich_text(":memo: Notes") == [{"type": "text", "text": {"content": "📝 Notes"}}]


def test_rich_text_links_urls():
    items = to_notion_rich_text("See https://a.test/1 and https://b.test/2.")

    assert [i["text"]["content"] for i in items] == ["See ", "https://a.test/1", " and ", "https://b.test/2."]
    assert items[1]["text"]["link"] == {"url": "https://a.test/1"}
    assert "link" not in items[2]["text"]


def test_rich_text_splits_long_text():
    items = to_notion_rich_text("x" * (NOTION_TEXT_LIMIT + 10))

    assert [len(i["text"]["content"]) for i in items] == [NOTION_TEXT_LIMIT, 10]


def test_rich_text_of_empty_message():
    assert to_notion_rich_text("") == []
