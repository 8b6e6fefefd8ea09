import re
import logging
from typing import Any
from urllib.parse import urlparse, ParseResult

logger = logging.getLogger(__name__)


class SecurityValidator:
    """Validation helpers for values read from the process environment"""

    # Allowed message queue URL schemes
    ALLOWED_SCHEMES = {'redis', 'rediss'}

    MAX_URL_LENGTH = 2048
    MAX_POD_NAME_LENGTH = 253
    MAX_NAMESPACE_LENGTH = 63

    # Fields never written to the log verbatim
    SENSITIVE_FIELDS = ('password', 'secret', 'token')

    DNS_LABEL_REGEX = re.compile(r'^[a-z0-9]([-a-z0-9]*[a-z0-9])?$')
    DNS_SUBDOMAIN_REGEX = re.compile(r'^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$')

    @classmethod
    def validate_url(cls, url: str) -> ParseResult:
        """Validate and parse the message queue URL"""
        if not url:
            raise ValueError("URL cannot be empty")

        if len(url) > cls.MAX_URL_LENGTH:
            raise ValueError(f"URL exceeds maximum length of {cls.MAX_URL_LENGTH}")

        parsed = urlparse(url)

        if not parsed.scheme:
            raise ValueError("URL must include scheme (redis/rediss)")

        if parsed.scheme.lower() not in cls.ALLOWED_SCHEMES:
            raise ValueError(f"URL scheme must be one of: {', '.join(sorted(cls.ALLOWED_SCHEMES))}")

        if not parsed.netloc:
            raise ValueError("URL must include hostname")

        return parsed

    @classmethod
    def validate_kubernetes_name(cls, name: str, field_name: str = "name") -> str:
        """Validate Kubernetes resource names"""
        if not name:
            raise ValueError(f"{field_name} cannot be empty")

        if field_name == "pod name":
            max_length, pattern = cls.MAX_POD_NAME_LENGTH, cls.DNS_SUBDOMAIN_REGEX
        else:
            max_length, pattern = cls.MAX_NAMESPACE_LENGTH, cls.DNS_LABEL_REGEX

        if len(name) > max_length:
            raise ValueError(f"{field_name} exceeds maximum length of {max_length}")

        if not pattern.match(name):
            raise ValueError(f"{field_name} must be a valid DNS name")

        return name

    @classmethod
    def validate_port(cls, port: Any) -> int:
        """Validate a TCP port number"""
        try:
            value = int(port)
        except (TypeError, ValueError):
            raise ValueError(f"Port must be an integer, got {port!r}")

        if not 1 <= value <= 65535:
            raise ValueError(f"Port must be between 1 and 65535, got {value}")

        return value

    @classmethod
    def sanitize_log_data(cls, data: Any) -> Any:
        """Sanitize data for logging (remove sensitive information)"""
        if isinstance(data, dict):
            sanitized = {}
            for key, value in data.items():
                if value is not None and any(s in str(key).lower() for s in cls.SENSITIVE_FIELDS):
                    sanitized[key] = "[REDACTED]"
                else:
                    sanitized[key] = cls.sanitize_log_data(value)
            return sanitized
        elif isinstance(data, (list, tuple)):
            return [cls.sanitize_log_data(item) for item in data]
        else:
            return data

    @classmethod
    def redact_url(cls, parsed: ParseResult) -> str:
        """Render a parsed URL with any password masked"""
        if parsed.password is None:
            return parsed.geturl()

        host = parsed.netloc.rsplit("@", 1)[1]
        netloc = f"{parsed.username or ''}:[REDACTED]@{host}"
        return parsed._replace(netloc=netloc).geturl()
