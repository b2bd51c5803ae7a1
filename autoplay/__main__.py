"""
Entry point for running the autoplay package as a module.

Usage:
    python -m autoplay --help
    python -m autoplay --gpu 0 --gpu 1 --games 2
"""

from autoplay.cli import main

if __name__ == "__main__":
    main()
