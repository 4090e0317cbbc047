"""farmpay - payment & wallet transaction core for farm management."""

__version__ = "0.1.0"
