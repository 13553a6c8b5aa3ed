"""
SocialVPN exception hierarchy.

None of these are fatal to the engine: callers log them and continue.
"""


class SocialVPNError(Exception):
    """Base class for all SocialVPN errors."""
    pass


class CertificateError(SocialVPNError):
    """Certificate bytes could not be parsed or are missing required fields."""
    pass


class BackendError(SocialVPNError):
    """A social-network or identity-provider backend could not be reached."""
    pass


class ConfigError(SocialVPNError):
    """Configuration file or environment overrides are invalid."""
    pass
