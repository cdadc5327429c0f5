"""
Entry point for running git-notify as ``python -m gitnotify``.
"""

from .cli import main

if __name__ == '__main__':
    main()
