"""auth/ -- Credentials, tokens and session management for the health portal.

Layer rule: auth/ imports from core/, consent/ and patients/ (auth.service
wires registration) but never from api/ or audit/.
api/ imports from auth/, not the other way around.
"""
