"""procpump entry point.

Supports: python -m procpump
"""

from .app import main

if __name__ == "__main__":
    main()
