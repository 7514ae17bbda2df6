"""
tyvt - Rate-limited, key-rotating batch scanner

Issues paced, quota-aware requests against a remote scanning service using a
rotating pool of API keys, and aggregates per-domain outcomes into a batch
result that fails only when more than half of the domains failed.

Copyright (c) 2025
Licensed under MIT License
"""

__version__ = "1.0.0"
__author__ = "tyvt Team"
__status__ = "Development"
