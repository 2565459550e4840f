#!/usr/bin/env python3
"""Onshape API Authentication Tool

Checks credentials and shows how requests are signed.
"""
import sys

from onshape_auth.cli import main


if __name__ == "__main__":
    sys.exit(main())
