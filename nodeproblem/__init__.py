"""Find node problems in system logs and kernel messages, track problem metrics and check component health."""

__version__ = "0.1.0"