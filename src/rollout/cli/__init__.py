"""rollout CLI - Typer-based command-line interface.

Install with::

    pip install rollout-spine

Entry point::

    rollout --help
"""
