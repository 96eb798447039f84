"""auth/ -- OTP login, sessions, and authorization for OTPGate.

Layer rule: auth/ imports only stdlib + third-party libraries + core/,
csrf/, and mail/. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
