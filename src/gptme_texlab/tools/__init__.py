"""texlab tools for gptme.

Provides the texlab tool for building and forward search.
The tool is automatically discovered by gptme's plugin system.
"""

from .texlab_tool import tool

__all__ = ["tool"]
