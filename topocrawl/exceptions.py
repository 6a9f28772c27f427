"""
TopoCrawl - Error taxonomy.

Per-device errors (everything below except the credential/config/seed
startup errors) are caught at the device workflow boundary and recorded
on the device; they never abort a crawl.
"""


class TopoCrawlError(Exception):
    """Base class for all TopoCrawl errors."""
    pass


# =============================================================================
# Session errors
# =============================================================================

class SessionConnectionError(TopoCrawlError, ConnectionError):
    """Transport negotiation, authentication, or channel failure."""
    pass


class PromptDetectionError(TopoCrawlError):
    """No CLI prompt could be inferred from the shell output."""
    pass


class CommandTimeoutError(TopoCrawlError, TimeoutError):
    """Command output never returned to the prompt in time."""

    def __init__(self, message: str, command: str = "", output: str = ""):
        super().__init__(message)
        self.command = command
        self.output = output


# =============================================================================
# Discovery errors
# =============================================================================

class DiscoveryTimeoutError(TopoCrawlError, TimeoutError):
    """A device's whole discovery budget was exceeded."""
    pass


class NoCredentialsError(TopoCrawlError):
    """No credential could be used (none configured, or all rejected)."""
    pass


class TemplateLoadError(TopoCrawlError):
    """A parse template could not be read. Logged, never fatal."""
    pass


class ParseError(TopoCrawlError):
    """A single template failed against some output."""
    pass


# =============================================================================
# Startup errors
# =============================================================================

class CredentialsFileError(TopoCrawlError):
    """Credentials file missing, unreadable, or malformed."""
    pass


class ConfigError(TopoCrawlError):
    """Invalid configuration file or value."""
    pass


class SeedFormatError(TopoCrawlError, ValueError):
    """Malformed --seed entry."""
    pass
