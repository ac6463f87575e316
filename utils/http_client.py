"""HTTP client with optional retries for outbound notification calls."""
import time
import logging
import requests

logger = logging.getLogger("alertmonitor.http")


class APIError(Exception):
    """API request error with status code and response body."""
    def __init__(self, message, status_code=None, response_body=None, source=None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.source = source


class HTTPClient:
    """Thin requests.Session wrapper with per-call timeout and optional retries.

    Notification channels run with max_retries=0: a failed send is reported
    once and retried, if at all, on a later tick.
    """

    RETRYABLE_STATUS = {429, 500, 502, 503, 504}

    def __init__(self, base_url="", timeout=10, max_retries=0, headers=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": "AlertMonitor/1.0"})
        if headers:
            self.session.headers.update(headers)

    def post(self, path="", json=None, data=None, headers=None):
        """POST and return the decoded body (JSON when possible, else text)."""
        return self._request("POST", path, json=json, data=data, headers=headers)

    def _url(self, path):
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not self.base_url:
            return path
        return f"{self.base_url}/{path.lstrip('/')}" if path else self.base_url

    def _request(self, method, path, json=None, data=None, headers=None):
        url = self._url(path)
        last_error = None
        for attempt in range(self.max_retries + 1):
            try:
                start = time.time()
                resp = self.session.request(method, url, json=json, data=data,
                                            headers=headers, timeout=self.timeout)
                latency = int((time.time() - start) * 1000)
                logger.debug(f"{method} {url} → {resp.status_code} ({latency}ms)")

                if 200 <= resp.status_code < 300:
                    try:
                        return resp.json()
                    except ValueError:
                        return resp.text

                error = APIError(
                    f"HTTP {resp.status_code} from {url}",
                    status_code=resp.status_code,
                    response_body=resp.text[:500],
                )
                if resp.status_code not in self.RETRYABLE_STATUS or attempt >= self.max_retries:
                    raise error
                logger.warning(f"Retryable {resp.status_code} from {url} (attempt {attempt + 1})")
                last_error = error

            except requests.exceptions.RequestException as e:
                logger.warning(f"Request error for {url}: {e} (attempt {attempt + 1})")
                last_error = APIError(f"Request to {url} failed: {e}")
                if attempt >= self.max_retries:
                    raise last_error from e

            time.sleep(min(2 ** attempt, 10))

        raise last_error or APIError(f"Max retries exceeded for {url}")
