#!/usr/bin/env python3
"""
ABC Bank Management System Entry Point

Starts the interactive console against the configured database.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from bank_management.cli import main


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nShutting down ABC Bank Management System...")
    except Exception as e:
        print(f"Error starting console: {e}")
        sys.exit(1)
