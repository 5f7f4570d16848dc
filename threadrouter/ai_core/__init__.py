# AI Core module

"""
AI Core Module - discussion analysis.

Key responsibilities:
- Discussion summary and task detection (structured output)
- Topic labeling restricted to a flow's accepted topics
- Result caching by thread content
"""
