"""Main entry point when executing cardwire as a package.

This allows running the package using python -m cardwire.
"""

from cardwire.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
