"""
NOLA News Watcher - Automated monitoring of the City of New Orleans news page.

This package provides functionality to:
- Fetch the news listing through an ordered list of relays
- Parse the HTML listing into structured news records
- Compare results with the previous check to detect added and removed items
- Score items for newsworthiness against user keywords
- Persist snapshots, history and configuration, and raise alerts
"""

__version__ = "1.0.0"
__author__ = "NOLA News Watcher Team"
