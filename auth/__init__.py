"""auth/ -- Credential and reset-token engine for the account service.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or mail/.
api/ and mail/ import from auth/, not the other way around.
"""
