"""texlab integration plugin for gptme.

This plugin connects gptme to the texlab LaTeX language server, exposing
build and forward-search requests as a tool and forwarding file saves so the
server can lint and build on save.
"""

__version__ = "0.1.0"
