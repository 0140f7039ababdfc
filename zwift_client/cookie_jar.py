"""Per-client cookie jar with Set-Cookie parsing and JSON serialization."""

from __future__ import annotations

import json
import threading
import time
from dataclasses import asdict, dataclass
from email.utils import parsedate_to_datetime
from http.cookies import CookieError, SimpleCookie
from typing import Iterator
from urllib.parse import urlparse


@dataclass
class Cookie:
    """Cookie representation.

    Attributes:
        name: Cookie name.
        value: Cookie value.
        domain: Cookie domain.
        path: Cookie path.
        expires: Expiration timestamp (None for session cookie).
        secure: Whether cookie requires HTTPS.
        http_only: Whether cookie is HTTP-only.
        host_only: True when no Domain attribute was sent, so the cookie only
                   matches the exact host that set it.
    """

    name: str
    value: str
    domain: str = ""
    path: str = "/"
    expires: float | None = None
    secure: bool = False
    http_only: bool = False
    host_only: bool = True

    @property
    def is_expired(self) -> bool:
        """Check if cookie has expired."""
        if self.expires is None:
            return False
        return time.time() >= self.expires

    def matches_domain(self, domain: str) -> bool:
        """Check if cookie matches the given domain."""
        domain = domain.lower()
        cookie_domain = self.domain.lower().lstrip(".")

        if domain == cookie_domain:
            return True
        if self.host_only:
            return False

        # Subdomain match
        return domain.endswith("." + cookie_domain)

    def matches_path(self, path: str) -> bool:
        """Check if cookie matches the given path."""
        if self.path == "/" or path == self.path:
            return True
        prefix = self.path if self.path.endswith("/") else self.path + "/"
        return path.startswith(prefix)


def _default_path(path: str) -> str:
    """Default cookie path for a request path (RFC 6265 section 5.1.4)."""
    if not path.startswith("/") or path.count("/") == 1:
        return "/"
    return path[: path.rfind("/")]


def _parse_expires(morsel_expires: str, max_age: str) -> float | None:
    if max_age:
        try:
            return time.time() + int(max_age)
        except ValueError:
            pass
    if morsel_expires:
        try:
            return parsedate_to_datetime(morsel_expires).timestamp()
        except (TypeError, ValueError):
            return None
    return None


class CookieJar:
    """Cookie storage keyed by (domain, path, name).

    Operations are individually guarded by a ``threading.Lock``; sequences of
    operations are not atomic.
    """

    def __init__(self):
        """Initialize empty cookie jar."""
        self._cookies: dict[tuple[str, str, str], Cookie] = {}
        self._lock = threading.Lock()

    def _cleanup_expired(self) -> None:
        """Remove expired cookies. Must be called under lock."""
        expired = [key for key, cookie in self._cookies.items() if cookie.is_expired]
        for key in expired:
            del self._cookies[key]

    def set(self, cookie: Cookie) -> None:
        """Store a cookie, replacing any with the same (domain, path, name)."""
        key = (cookie.domain.lower().lstrip("."), cookie.path, cookie.name)
        with self._lock:
            if cookie.is_expired:
                # Servers expire cookies to delete them
                self._cookies.pop(key, None)
            else:
                self._cookies[key] = cookie

    def set_cookie(self, header: str, url: str) -> Cookie | None:
        """Apply one ``Set-Cookie`` header value received for ``url``.

        Args:
            header: Raw Set-Cookie header value.
            url: The request URL the header was received for.

        Returns:
            The stored cookie, or None if the header was unparseable or
            carried a Domain attribute that does not match the URL.
        """
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()

        simple = SimpleCookie()
        try:
            simple.load(header)
        except CookieError:
            return None
        if not simple:
            return None

        # A Set-Cookie header carries exactly one cookie
        name, morsel = next(iter(simple.items()))

        domain_attr = morsel["domain"].lower().lstrip(".")
        if domain_attr and host != domain_attr and not host.endswith("." + domain_attr):
            return None

        cookie = Cookie(
            name=name,
            value=morsel.value,
            domain=domain_attr or host,
            path=morsel["path"] or _default_path(parsed.path or "/"),
            expires=_parse_expires(morsel["expires"], morsel["max-age"]),
            secure=bool(morsel["secure"]),
            http_only=bool(morsel["httponly"]),
            host_only=not domain_attr,
        )
        self.set(cookie)
        return cookie

    def get_cookies(self, url: str, all_paths: bool = False) -> list[Cookie]:
        """Get cookies applicable to URL.

        Args:
            url: The request URL.
            all_paths: Ignore the path attribute when matching.

        Returns:
            Matching cookies, most specific path first.
        """
        parsed = urlparse(url)
        domain = (parsed.hostname or "").lower()
        path = parsed.path or "/"
        is_secure = parsed.scheme.lower() == "https"

        with self._lock:
            self._cleanup_expired()
            result = [
                cookie
                for cookie in self._cookies.values()
                if cookie.matches_domain(domain)
                and (all_paths or cookie.matches_path(path))
                and (is_secure or not cookie.secure)
            ]

        result.sort(key=lambda c: len(c.path), reverse=True)
        return result

    def get_cookie_string(self, url: str) -> str:
        """Build the ``Cookie`` request header value for URL."""
        return "; ".join(f"{c.name}={c.value}" for c in self.get_cookies(url))

    def remove_all(self) -> None:
        """Clear all cookies."""
        with self._lock:
            self._cookies.clear()

    def serialize(self) -> str:
        """Serialize the jar to a JSON string."""
        with self._lock:
            self._cleanup_expired()
            cookies = [asdict(cookie) for cookie in self._cookies.values()]
        return json.dumps({"version": 1, "cookies": cookies})

    @classmethod
    def deserialize(cls, data: str) -> "CookieJar":
        """Rebuild a jar from ``serialize()`` output.

        Raises:
            ValueError: If ``data`` is not a serialized jar.
        """
        payload = json.loads(data)
        if not isinstance(payload, dict) or not isinstance(payload.get("cookies"), list):
            raise ValueError("Not a serialized cookie jar")

        jar = cls()
        for item in payload["cookies"]:
            jar.set(Cookie(**item))
        return jar

    def __iter__(self) -> Iterator[Cookie]:
        with self._lock:
            return iter(list(self._cookies.values()))

    def __len__(self) -> int:
        """Return total number of cookies."""
        with self._lock:
            return len(self._cookies)

    def __bool__(self) -> bool:
        """Return True if jar has any cookies."""
        with self._lock:
            return bool(self._cookies)
