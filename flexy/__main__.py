"""Entry point for ``python -m flexy``."""

from flexy.cli import cli_entry

if __name__ == "__main__":
    cli_entry()
