"""kern-me-up package."""

__all__ = [
    "bootscripts",
    "cache",
    "cli",
    "config",
    "constants",
    "exceptions",
    "images",
    "initfs",
    "kconfig",
    "kernel",
    "launcher",
    "models",
    "pipeline",
    "utils",
]
