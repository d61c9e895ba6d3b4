"""kubeapply command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``kubeapply`` script).
"""

from kubeapply.cli.main import cli

__all__ = ["cli"]
