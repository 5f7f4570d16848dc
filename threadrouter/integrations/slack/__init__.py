# Slack integration module
from threadrouter.integrations.slack.client import SlackSourceAdapter
from threadrouter.integrations.slack.parser import ThreadRef, parse_thread_ref, parse_permalink

__all__ = ["SlackSourceAdapter", "ThreadRef", "parse_thread_ref", "parse_permalink"]
