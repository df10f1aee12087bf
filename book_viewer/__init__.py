"""
Book Viewer - Real-time L2 order book engine for the Coinbase Exchange feed.

Architecture:
- datafeed/: WebSocket connection, wire codec and local order book maintenance
- engine/: Derived views (price aggregation, top-of-book tracking)
- ui/: Order book ladder + top-of-book visualization (Textual TUI)
"""

__version__ = "0.1.0"
