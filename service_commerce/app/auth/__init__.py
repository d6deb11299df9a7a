"""
Authentication package for the Commerce service.

- passwords: bcrypt hashing helpers.
- token_validator: JWT issue/validate/revoke state machine.
- middleware: request credential extraction and FastAPI dependency.
"""
