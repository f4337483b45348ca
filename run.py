#!/usr/bin/env python3
"""Convenience runner for the Kapture server.

Usage:
    python run.py              # serve on the configured host/port
    python run.py replay run.csv --map run.html
"""
import logging
import sys

from kapture.main import main

if __name__ == "__main__":
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    sys.exit(main(sys.argv[1:] or ["serve"]))
