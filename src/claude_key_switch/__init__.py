"""Round-robin API key rotation for Claude tooling."""

from importlib.metadata import version

__version__ = version("claude-key-switch")

from claude_key_switch.switcher import KeySwitcher

__all__ = ["KeySwitcher", "__version__"]
