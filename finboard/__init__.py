"""
Finboard Analytics Backend

Multi-tenant finance-record backend focused on dashboard analytics:
1. Aggregates each company's transaction ledger into five dashboard views
2. Serves views through a Redis cache-aside layer
3. Recomputes views in background workers after ledger changes
4. Keeps recently active companies warm with an hourly refresh
"""

__version__ = "0.1.0"
