"""Reusable building blocks: command execution, configuration loading and errors."""
