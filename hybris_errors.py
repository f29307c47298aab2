#!/usr/bin/env python3
"""
Exception types raised by the Hybris client and HAC session layer
"""

from typing import Optional


class HybrisError(Exception):
    """Base exception for Hybris client errors"""
    pass


class ConfigurationError(HybrisError):
    """Required configuration is missing or invalid"""
    pass


class AuthenticationError(HybrisError):
    """HAC rejected the credentials or the login submission"""
    pass


class AuthProtocolError(HybrisError):
    """HAC login markup did not match the expected form (CSRF token not found)"""
    pass


class SessionExpiredError(HybrisError):
    """Re-authentication did not restore a usable HAC session"""
    pass


class HybrisConnectionError(HybrisError):
    """Transport-level failure talking to the Hybris instance"""
    pass


class RequestTimeoutError(HybrisError):
    """A request exceeded the configured time bound"""

    def __init__(self, timeout: float, url: str):
        self.timeout = timeout
        self.url = url
        super().__init__(f"Request to {url} timed out after {timeout}s")


class RemoteError(HybrisError):
    """Backend answered with a failure status"""

    def __init__(self, status: int, body: str, source: str = "Hybris API"):
        self.status = status
        self.body = body
        super().__init__(f"{source} error ({status}): {body}")


class UnexpectedResponseError(HybrisError):
    """An HTML page came back where data was expected (usually a login page)"""

    def __init__(
        self,
        message: str,
        body_prefix: str,
        status: Optional[int] = None,
        title: Optional[str] = None
    ):
        self.body_prefix = body_prefix
        self.status = status
        self.title = title
        super().__init__(message)
