"""csrf/ -- CSRF token lifecycle for OTPGate.

Layer rule: csrf/ imports only stdlib, starlette request types, and core/.
It does NOT import from api/, auth/, or mail/. auth/ and api/ import from
csrf/, not the other way around.
"""
