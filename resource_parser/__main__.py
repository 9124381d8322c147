"""
Module entry point for: python -m resource_parser

Allows running the parser directly as a module:
    python -m resource_parser parse <pdf_path_or_url> [options]
    python -m resource_parser batch <directory> [options]
    python -m resource_parser validate <json_path>
    python -m resource_parser info <pdf_path_or_url>
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
