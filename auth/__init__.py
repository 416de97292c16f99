"""auth/ -- Authentication and authorization package for PermGate.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/.
api/ and the operator CLI import from auth/, not the other way around.
"""
