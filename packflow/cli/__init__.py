from packflow.cli.main import main

__all__ = ["main"]
