"""auth/ -- Authentication and authorization package for Portal.

Layer rule: auth/ imports stdlib, third-party libraries, core/ and audit/.
It does NOT import from api/ or tracker/; ownership lookups reach tracker/
only through the OwnershipResolver protocol in auth/access.py.
api/ imports from auth/, not the other way around.
"""
