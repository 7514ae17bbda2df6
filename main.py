#!/usr/bin/env python3
"""
tyvt - Rate-limited, key-rotating batch scanner

Main entry point when running from a source checkout.

Usage:
    python main.py scan example.com --key KEY1 --key KEY2
    python main.py scan --config scan.yaml --output results.json
"""

from tyvt.cli import cli


if __name__ == '__main__':
    cli()
