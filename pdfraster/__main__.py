"""
Module entry point for: python -m pdfraster

Allows running the converter directly as a module:
    python -m pdfraster to-jpg <pdf_path> [options]
    python -m pdfraster compress <pdf_path> [options]
    python -m pdfraster serve [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
