"""
Entry point for running ccvm as a module.

Usage:
    python -m ccvm --help
    python -m ccvm backup create -d "before upgrade"
    python -m ccvm backup list
"""

from ccvm.cli import cli

if __name__ == "__main__":
    cli()
