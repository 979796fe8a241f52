from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from .errors import DeliveryError

logger = logging.getLogger(__name__)

PASTEFY_API = "https://pastefy.app/api/v2/paste"
PASTEFY_VIEW = "https://pastefy.app/{id}"
LINK4M_API = "https://link4m.co/api-shorten/v2"


@dataclass
class Publication:
    id: str
    url: str
    raw: Optional[Dict[str, Any]] = None


class DeliveryChannel(ABC):
    """
    Publishes a freshly minted key where the end user can read it.

    publish() failures propagate. shorten() never fails: it returns the
    short URL on success and the input URL on any error.
    """

    # ----- publishing -----
    @abstractmethod
    def publish(self, title: str, body: str) -> Publication: ...

    # ----- shortening -----
    @abstractmethod
    def create_short_url(self, url: str) -> str: ...

    def shorten(self, url: str) -> str:
        try:
            return self.create_short_url(url)
        except Exception as e:
            logger.warning("Shortening failed, using the direct link: %s", e)
            return url


class PastefyLink4mChannel(DeliveryChannel):
    """
    Pastefy unlisted paste for the note, Link4m for the short link.
    """

    def __init__(
        self,
        pastefy_token: str,
        link4m_token: str,
        timeout: float = 12.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.pastefy_token = pastefy_token
        self.link4m_token = link4m_token
        self.timeout = timeout
        self.session = session or requests.Session()

    def publish(self, title: str, body: str) -> Publication:
        if not self.pastefy_token:
            raise DeliveryError("Missing PASTEFY_TOKEN")

        r = self.session.post(
            PASTEFY_API,
            headers={"Authorization": f"Bearer {self.pastefy_token}"},
            json={
                "title": title,
                "content": body,
                "encrypted": False,
                "visibility": "UNLISTED",
                "type": "PASTE",
            },
            timeout=self.timeout,
        )
        if not r.ok:
            raise DeliveryError(f"Pastefy create failed: {r.status_code} {r.text}")

        data = r.json() or {}
        paste = data.get("paste") or {}
        paste_id = paste.get("id")
        url = PASTEFY_VIEW.format(id=paste_id) if paste_id else paste.get("raw_url")
        if not url:
            raise DeliveryError(f"Pastefy returned no paste: {data}")

        logger.info("Published paste %s", paste_id or url)
        return Publication(id=str(paste_id or ""), url=url, raw=data)

    def create_short_url(self, url: str) -> str:
        if not self.link4m_token:
            raise DeliveryError("Missing LINK4M_TOKEN")

        r = self.session.get(
            LINK4M_API,
            params={"api": self.link4m_token, "url": url},
            timeout=self.timeout,
        )
        data = r.json() or {}
        if data.get("status") != "success" or not data.get("shortenedUrl"):
            raise DeliveryError(f"Link4m shorten failed: {data}")
        return str(data["shortenedUrl"])
