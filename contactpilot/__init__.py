"""Contact page automation: discovery, form filling and remote control."""

__version__ = "0.1.0"
