"""texlab hooks for gptme.

Forwards file saves to the texlab server.
"""

from .post_save import register

__all__ = ["register"]
