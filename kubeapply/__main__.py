"""Entry point for `python -m kubeapply`.

Usage:
    python -m kubeapply diff clusters/*.yaml
"""

from __future__ import annotations

from kubeapply.cli import cli

cli()
