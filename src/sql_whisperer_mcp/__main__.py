"""Entry point for running sql_whisperer_mcp as a module."""

from sql_whisperer_mcp.server import cli_entry

if __name__ == "__main__":
    cli_entry()
