"""Prompt template language: ``{% tag %}`` spans, ``for`` loops and pipes."""

from vatic.template.functions import RenderContext
from vatic.template.parser import parse, references
from vatic.template.renderer import render

__all__ = ["RenderContext", "parse", "references", "render"]
