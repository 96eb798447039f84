"""mail/ -- Outbound email delivery for OTPGate.

Layer rule: mail/ imports only stdlib + core/.
It does NOT import from api/, auth/, or csrf/.
"""
