"""
Identity core.

Storage- and transport-agnostic. Persistence goes through the
IdentityStore port in store.py; germy_auth.db provides the SQL adapter.
"""
