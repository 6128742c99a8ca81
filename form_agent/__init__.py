"""Profile-driven web form automation: resolve values, locate controls, fill and verify them."""

__version__ = "0.1.0"
