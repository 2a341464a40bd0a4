"""Entry point for python -m taleweaver"""
from taleweaver.cli.commands import app

if __name__ == "__main__":
    app()
