"""
Entry point for running davbackup as a module.

Usage:
    python -m davbackup [command] [options]
"""

from davbackup.cli import main

if __name__ == "__main__":
    main()
