"""audit/ -- Append-only activity ledger for Portal.

Layer rule: audit/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, auth/, or tracker/.
"""
