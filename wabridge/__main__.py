"""
Entry point for running wabridge as a module: python -m wabridge
"""

from wabridge.cli.commands import app

if __name__ == "__main__":
    app()
