"""User account service: registration, phone OTP login, tokens, roles and profiles."""

__version__ = "0.1.0"
