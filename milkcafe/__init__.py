"""
                Milk Café Loyalty Backend

Accounts, the Milkosy points ledger, orders, table reservations and the
happy-hour banner, with live updates pushed over WebSocket.

Version: 1.0.0
"""

__version__ = "1.0.0"
