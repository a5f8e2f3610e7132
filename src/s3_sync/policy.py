# src/s3_sync/policy.py
"""
Per-content-type header policies.

A `HeaderPolicy` describes the cache and transfer headers attached to an
object when it is uploaded. Policies are registered in a `HeaderPolicyTable`
keyed by content type, with the special `default` key used whenever a content
type has no policy of its own.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import Dict, List, Optional, Union

from s3_sync.exceptions import ConfigError

DEFAULT_POLICY_KEY: str = "default"

ExpiresValue = Union[datetime, timedelta]


def normalize_content_type(content_type: str) -> str:
    """
    Normalize a content type for use as a table key.

    Parameters such as `; charset=utf-8` are dropped and the result is
    lower-cased, so `Text/HTML; charset=utf-8` and `text/html` share a policy.

    Args:
        content_type (str): The raw content type string.

    Returns:
        str: The normalized content type.
    """
    return content_type.split(";", 1)[0].strip().lower()


@dataclass(frozen=True)
class HeaderPolicy:
    """
    Transfer metadata applied to uploads of a given content type.

    Attributes:
        max_age (int, optional): `max-age` directive in seconds.
        s_maxage (int, optional): `s-maxage` directive in seconds.
        public (bool): Emit the `public` directive.
        private (bool): Emit the `private` directive.
        no_cache (bool): Emit the `no-cache` directive.
        no_store (bool): Emit the `no-store` directive.
        must_revalidate (bool): Emit the `must-revalidate` directive.
        proxy_revalidate (bool): Emit the `proxy-revalidate` directive.
        expires (datetime | timedelta, optional): Absolute expiry, or an
            offset added to the current time when the header is rendered.
        content_encoding (str, optional): Value of the `Content-Encoding`
            header.
    """

    max_age: Optional[int] = None
    s_maxage: Optional[int] = None
    public: bool = False
    private: bool = False
    no_cache: bool = False
    no_store: bool = False
    must_revalidate: bool = False
    proxy_revalidate: bool = False
    expires: Optional[ExpiresValue] = None
    content_encoding: Optional[str] = None

    @property
    def cache_control(self) -> Optional[str]:
        """
        Serialize the cache directives in their canonical order.

        Returns:
            Optional[str]: The `Cache-Control` value, or None when no
                directive is set.
        """
        directives: List[str] = []
        if self.max_age is not None:
            directives.append(f"max-age={self.max_age}")
        if self.s_maxage is not None:
            directives.append(f"s-maxage={self.s_maxage}")
        if self.public:
            directives.append("public")
        if self.private:
            directives.append("private")
        if self.no_cache:
            directives.append("no-cache")
        if self.no_store:
            directives.append("no-store")
        if self.must_revalidate:
            directives.append("must-revalidate")
        if self.proxy_revalidate:
            directives.append("proxy-revalidate")
        return ", ".join(directives) if directives else None

    def expires_header(self, now: Optional[datetime] = None) -> Optional[str]:
        """
        Render the `Expires` header as an HTTP-date.

        Args:
            now (datetime, optional): Reference time for offset-based expiry.
                Defaults to the current UTC time.

        Returns:
            Optional[str]: The HTTP-date string, or None if no expiry is set.
        """
        if self.expires is None:
            return None
        if isinstance(self.expires, timedelta):
            moment: datetime = (now or datetime.now(timezone.utc)) + self.expires
        else:
            moment = self.expires
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return format_datetime(moment.astimezone(timezone.utc), usegmt=True)

    def headers(self, now: Optional[datetime] = None) -> Dict[str, str]:
        """
        Return the HTTP headers this policy contributes.

        Args:
            now (datetime, optional): Reference time for offset-based expiry.

        Returns:
            Dict[str, str]: Only the headers that are actually set.
        """
        result: Dict[str, str] = {}
        cache_control: Optional[str] = self.cache_control
        if cache_control is not None:
            result["Cache-Control"] = cache_control
        expires: Optional[str] = self.expires_header(now)
        if expires is not None:
            result["Expires"] = expires
        if self.content_encoding:
            result["Content-Encoding"] = self.content_encoding
        return result


EMPTY_POLICY: HeaderPolicy = HeaderPolicy()


@dataclass
class HeaderPolicyTable:
    """A content-type to `HeaderPolicy` mapping with a `default` fallback."""

    _policies: Dict[str, HeaderPolicy] = field(default_factory=dict)

    def register(self, content_type: str, policy: HeaderPolicy) -> None:
        """
        Store a policy, replacing any previous one for the same content type.

        Args:
            content_type (str): A content type, or `default`.
            policy (HeaderPolicy): The policy to register.
        """
        self._policies[normalize_content_type(content_type)] = policy

    def resolve(self, content_type: Optional[str]) -> HeaderPolicy:
        """
        Look up the policy for a content type.

        A miss is not an error: the `default` policy is returned when one is
        registered, otherwise an empty policy that adds no headers.

        Args:
            content_type (str, optional): The content type of the upload.

        Returns:
            HeaderPolicy: The matching, default, or empty policy.
        """
        if content_type:
            policy: Optional[HeaderPolicy] = self._policies.get(
                normalize_content_type(content_type)
            )
            if policy is not None:
                return policy
        return self._policies.get(DEFAULT_POLICY_KEY, EMPTY_POLICY)

    def __len__(self) -> int:
        return len(self._policies)

    def __contains__(self, content_type: object) -> bool:
        return (
            isinstance(content_type, str)
            and normalize_content_type(content_type) in self._policies
        )


_FLAG_DIRECTIVES: Dict[str, str] = {
    "public": "public",
    "private": "private",
    "no-cache": "no_cache",
    "no-store": "no_store",
    "must-revalidate": "must_revalidate",
    "proxy-revalidate": "proxy_revalidate",
}


def _parse_seconds(name: str, value: str) -> int:
    try:
        seconds: int = int(value)
    except ValueError:
        raise ConfigError(f"Policy directive '{name}' expects seconds, got '{value}'.")
    if seconds < 0:
        raise ConfigError(f"Policy directive '{name}' must not be negative.")
    return seconds


def parse_policy(text: str) -> HeaderPolicy:
    """
    Parse a comma-separated directive list into a `HeaderPolicy`.

    Example: `max-age=3600,public,expires=86400,content-encoding=gzip`.
    `expires` is an offset in seconds from the time of upload.

    Args:
        text (str): The directive list.

    Returns:
        HeaderPolicy: The parsed policy.

    Raises:
        ConfigError: If a directive is unknown or malformed.
    """
    values: Dict[str, object] = {}
    for raw in text.split(","):
        token: str = raw.strip()
        if not token:
            continue
        name, _, value = token.partition("=")
        name = name.strip().lower()
        value = value.strip()
        if name in _FLAG_DIRECTIVES and not value:
            values[_FLAG_DIRECTIVES[name]] = True
        elif name == "max-age":
            values["max_age"] = _parse_seconds(name, value)
        elif name == "s-maxage":
            values["s_maxage"] = _parse_seconds(name, value)
        elif name == "expires":
            values["expires"] = timedelta(seconds=_parse_seconds(name, value))
        elif name == "content-encoding" and value:
            values["content_encoding"] = value
        else:
            raise ConfigError(f"Unknown or malformed policy directive '{token}'.")
    return HeaderPolicy(**values)  # type: ignore[arg-type]
