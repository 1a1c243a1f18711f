"""
Browser automation module for design-scout
Typed tool wrappers and structured page queries
"""
from .browser_engine import BrowserEngine, ErrorCategory, categorize_error

__all__ = ["BrowserEngine", "ErrorCategory", "categorize_error"]
