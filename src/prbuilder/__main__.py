"""Entry point for running prbuilder as a module.

Allows running the application with:
    python -m prbuilder

This delegates to the Typer CLI app.
"""

from prbuilder.cli import app

if __name__ == "__main__":
    app()
