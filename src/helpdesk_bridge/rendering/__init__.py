"""Customer email rendering."""

from .templates import JinjaTemplateRenderer

__all__ = ["JinjaTemplateRenderer"]
