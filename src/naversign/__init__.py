"""
naversign: bcrypt client signatures for the Naver Commerce API.

An HTTP service and CLI that derive and verify the ``client_secret_sign``
value Naver's token endpoint requires.
"""

__version__ = "1.0.0"
