import logging

import requests

from ..core.interfaces import IAdapter, ISource

logger = logging.getLogger("RestSource")


class RestSourceAdapter(ISource, IAdapter):
    """
    Reads the snapshot from the simulator REST API.
    """
    def __init__(self, url: str, timeout: float = 2.0):
        self.url = url
        self.timeout = timeout
        self.session = None

    def connect(self):
        self.session = requests.Session()

    def disconnect(self):
        if self.session is not None:
            self.session.close()
            self.session = None

    def read(self) -> dict:
        getter = self.session.get if self.session is not None else requests.get
        try:
            response = getter(self.url, timeout=self.timeout)
            if response.status_code == 200:
                return response.json()
            logger.warning(f"REST Source returned {response.status_code}")
            return {}
        except requests.RequestException as e:
            logger.error(f"REST Source Read Failed: {e}")
            return {}
