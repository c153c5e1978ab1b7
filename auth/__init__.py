"""auth/ -- Email/password authentication engine for the auth gateway.

Owns users, credential accounts, sessions and verification records, password
hashing and the signed session cookie. The gateway treats it as an external
collaborator and only talks to it through api/delegate.py.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or profiles/.
api/ imports from auth/, not the other way around.
"""
