# client.py
"""
Python client for the Pinboard REST API.

PinStore is the client-side view cache: an ordered mapping of pin id to pin,
owned by a single PinboardClient. A feed load replaces it, "load more"
appends to it, and a like/save merges the server's answer into the cached
pin. Nothing is written to the store until the server has confirmed the
change, so a failed call leaves the previous view untouched.

Example:
    client = PinboardClient("http://localhost:5000")
    client.login("a@x.com", "secret123")
    client.load_feed(search="cats")
    while client.pins.has_more:
        client.load_more()
"""

import logging
from typing import Iterator, Optional

import requests

logger = logging.getLogger("pinboard.client")

DEFAULT_TIMEOUT = 30
DEFAULT_PAGE_LIMIT = 20


class ApiClientError(Exception):
    """A non-2xx answer from the API, carrying its tagged error kind."""

    def __init__(self, status_code: int, kind: str, message: str):
        super().__init__(f"{status_code} {kind}: {message}")
        self.status_code = status_code
        self.kind = kind
        self.message = message


class PinStore:
    def __init__(self):
        self._pins: dict[int, dict] = {}
        self.page = 0
        self.has_more = True
        self.filters: dict = {}

    def replace(self, pins, filters: Optional[dict] = None):
        """Drops everything cached and starts over from `pins` (a filter change)."""
        self._pins = {}
        self.filters = dict(filters or {})
        self.append(pins)

    def append(self, pins):
        """Adds a further page; pins already cached are merged in place and keep their position."""
        for pin in pins:
            current = self._pins.get(pin["id"])
            self._pins[pin["id"]] = {**current, **pin} if current else dict(pin)

    def merge(self, pin_id: int, **updates) -> Optional[dict]:
        current = self._pins.get(pin_id)
        if current is None:
            return None
        self._pins[pin_id] = {**current, **updates}
        return self._pins[pin_id]

    def remove(self, pin_id: int) -> Optional[dict]:
        return self._pins.pop(pin_id, None)

    def get(self, pin_id: int) -> Optional[dict]:
        return self._pins.get(pin_id)

    def ids(self) -> list:
        return list(self._pins)

    def __contains__(self, pin_id) -> bool:
        return pin_id in self._pins

    def __len__(self) -> int:
        return len(self._pins)

    def __iter__(self) -> Iterator[dict]:
        return iter(list(self._pins.values()))


class PinboardClient:
    def __init__(
        self,
        base_url: str,
        session=None,
        timeout: float = DEFAULT_TIMEOUT,
        page_limit: int = DEFAULT_PAGE_LIMIT,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.page_limit = page_limit
        self.token: Optional[str] = None
        self.user: Optional[dict] = None
        self.pins = PinStore()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        headers = kwargs.pop("headers", None) or {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        response = self.session.request(
            method, self.base_url + path, headers=headers, timeout=self.timeout, **kwargs
        )
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            kind = body.get("error", "unexpected")
            message = body.get("message", f"HTTP {response.status_code}")
            logger.debug("%s %s failed: %s %s", method, path, response.status_code, message)
            raise ApiClientError(response.status_code, kind, message)
        return body

    # -----------------------
    # Auth
    # -----------------------
    def _start_session(self, body: dict) -> dict:
        self.token = body["token"]
        self.user = body["user"]
        return self.user

    def signup(self, email: str, password: str, username: str, first_name: str = "", last_name: str = "") -> dict:
        body = self._request("POST", "/api/auth/signup", json={
            "email": email,
            "password": password,
            "username": username,
            "firstName": first_name,
            "lastName": last_name,
        })
        return self._start_session(body)

    def login(self, email: str, password: str) -> dict:
        body = self._request("POST", "/api/auth/login", json={"email": email, "password": password})
        return self._start_session(body)

    def logout(self):
        self.token = None
        self.user = None

    def me(self) -> dict:
        self.user = self._request("GET", "/api/auth/me")["user"]
        return self.user

    def update_profile(self, **fields) -> dict:
        self.user = self._request("PUT", "/api/auth/me", json=fields)["user"]
        return self.user

    def delete_account(self):
        self._request("DELETE", "/api/auth/me")
        self.logout()
        self.pins = PinStore()

    # -----------------------
    # Feed
    # -----------------------
    def _fetch_feed(self, page: int, filters: dict) -> dict:
        params = {"page": page, "limit": self.page_limit, **filters}
        return self._request("GET", "/api/pins", params=params)

    def load_feed(self, search: Optional[str] = None, category: Optional[str] = None) -> list:
        filters = {k: v for k, v in (("search", search), ("category", category)) if v}
        body = self._fetch_feed(1, filters)
        self.pins.replace(body["pins"], filters)
        self.pins.page = 1
        self.pins.has_more = body["hasMore"]
        return body["pins"]

    def load_more(self) -> list:
        if not self.pins.has_more:
            return []
        body = self._fetch_feed(self.pins.page + 1, self.pins.filters)
        self.pins.append(body["pins"])
        self.pins.page += 1
        self.pins.has_more = body["hasMore"]
        return body["pins"]

    # -----------------------
    # Pins
    # -----------------------
    def get_pin(self, pin_id: int) -> dict:
        pin = self._request("GET", f"/api/pins/{pin_id}")["pin"]
        if pin_id in self.pins:
            self.pins.merge(pin_id, **pin)
        return pin

    def create_pin(
        self,
        title: str,
        image: bytes,
        filename: str = "image.jpg",
        mimetype: str = "image/jpeg",
        description: str = "",
        link: str = "",
        category: Optional[str] = None,
    ) -> dict:
        data = {"title": title, "description": description, "link": link}
        if category:
            data["category"] = category
        files = {"image": (filename, image, mimetype)}
        return self._request("POST", "/api/pins", data=data, files=files)["pin"]

    def toggle_like(self, pin_id: int) -> bool:
        body = self._request("POST", f"/api/pins/{pin_id}/like")
        self.pins.merge(pin_id, liked_by_me=body["liked"], likes_count=body["likes_count"])
        return body["liked"]

    def toggle_save(self, pin_id: int) -> bool:
        body = self._request("POST", f"/api/pins/{pin_id}/save")
        self.pins.merge(pin_id, saved_by_me=body["saved"], saves_count=body["saves_count"])
        return body["saved"]

    def delete_pin(self, pin_id: int):
        self._request("DELETE", f"/api/pins/{pin_id}")
        self.pins.remove(pin_id)

    # -----------------------
    # Users
    # -----------------------
    def get_profile(self, user_id: int) -> dict:
        return self._request("GET", f"/api/users/{user_id}")["user"]

    def user_pins(self, user_id: int, page: int = 1) -> dict:
        return self._request("GET", f"/api/users/{user_id}/pins", params={"page": page, "limit": self.page_limit})

    def saved_pins(self, user_id: int, page: int = 1) -> dict:
        return self._request("GET", f"/api/users/{user_id}/saved", params={"page": page, "limit": self.page_limit})

    def toggle_follow(self, user_id: int) -> bool:
        return self._request("POST", f"/api/users/{user_id}/follow")["following"]

    def followers(self, user_id: int, page: int = 1) -> dict:
        return self._request("GET", f"/api/users/{user_id}/followers", params={"page": page, "limit": self.page_limit})

    def following(self, user_id: int, page: int = 1) -> dict:
        return self._request("GET", f"/api/users/{user_id}/following", params={"page": page, "limit": self.page_limit})

    def health(self) -> dict:
        return self._request("GET", "/api/health")
