"""Core modules for Account Book.

Everything under core/ is interface-agnostic: the CLI and the web server
both build on these modules.
"""
