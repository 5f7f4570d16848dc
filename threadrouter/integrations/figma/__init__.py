# Figma integration module
from threadrouter.integrations.figma.client import FigmaSourceAdapter, split_thread_ref

__all__ = ["FigmaSourceAdapter", "split_thread_ref"]
