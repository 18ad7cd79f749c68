"""auth/ -- Authentication, session and authorization core.

Login protocol (login.py), token issuance and refresh rotation (issuer.py,
ledger.py), TOTP and backup codes (totp.py, two_factor.py), the RBAC table
(rbac.py), persistence (store.py) and the audit trail (audit.py).

Layer rule: auth/ imports only stdlib, third-party libraries and core/config.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
