"""
CLI layer for insight360-deploy.

Terminal transport only: argument parsing, coloured output and tables.
The deployment logic lives in :mod:`insight360.deploy`.

Entry point::

    insight360-deploy --help
"""

from insight360.cli.app import app, main

__all__ = ["app", "main"]
