"""
CLI layer for enclave-spine.

Provides a Typer application whose commands delegate to
``enclave_spine.runner``. This package handles only terminal transport:
argument parsing, coloured output and table formatting.

Entry point::

    enclave-spine --help
"""

from enclave_spine.cli.app import app

__all__ = ["app"]
