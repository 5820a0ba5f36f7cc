"""Allow ``python -m dav_mcp`` as a shortcut for ``dav-mcp serve``."""

from dav_mcp.cli import cli

if __name__ == "__main__":
    cli(["serve"])
