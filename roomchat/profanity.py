# =========================================
#     roomchat — Profanity word list
#     Fetched once at startup, best-effort.
#     An empty list makes the filter a no-op.
# =========================================

import requests

from roomchat.config import PROFANITY_SOURCES, PROFANITY_FETCH_TIMEOUT
from roomchat.logger import log_info, log_warning


def _parse_words(response) -> set:
    """
    Sources are either a JSON array of words or plain text,
    one word per line. Try JSON first.
    """
    try:
        data = response.json()
    except ValueError:
        data = None

    if isinstance(data, list):
        raw = [w for w in data if isinstance(w, str)]
    else:
        raw = response.text.split("\n")

    return {w.strip().lower() for w in raw if w and w.strip()}


class ProfanityFilter:
    """
    Callable predicate: filter(text) -> bool.

    A message is profane when any whitespace-separated word,
    lowercased, is in the word list.
    """

    def __init__(self, sources=None, timeout=PROFANITY_FETCH_TIMEOUT, http=None):
        self.sources = list(PROFANITY_SOURCES if sources is None else sources)
        self.timeout = timeout
        self.http = http or requests
        self.words = set()

    def refresh(self) -> int:
        words = set()

        for url in self.sources:
            try:
                r = self.http.get(url, timeout=self.timeout)
            except requests.RequestException as e:
                log_warning("profanity", f"Fetch failed for {url}: {e}")
                continue

            if r.status_code != 200:
                log_warning("profanity", f"HTTP {r.status_code} from {url}")
                continue

            words |= _parse_words(r)

        if words:
            self.words = words
            log_info("profanity", f"Loaded {len(words)} profane words.")
        else:
            log_warning("profanity", "No profanity list loaded; filter is a no-op.")

        return len(self.words)

    def __call__(self, text) -> bool:
        if not self.words or not isinstance(text, str):
            return False
        return any(word in self.words for word in text.lower().split())
