# marketplace_search/utils.py
"""Shared utilities: logging, retry decorator and text normalization."""
import os
import re
import logging
import time
from functools import wraps
from dotenv import load_dotenv

load_dotenv()

def get_logger(name=__name__):
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        level=getattr(logging, level, logging.INFO)
    )
    return logging.getLogger(name)

logger = get_logger("marketplace_search")

def retry(exceptions, tries=3, delay=1, backoff=2, logger=logger):
    def deco_retry(f):
        @wraps(f)
        def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:
                    logger.warning("Retryable error: %s, retrying in %s sec", e, mdelay)
                    time.sleep(mdelay)
                    mtries -= 1
                    mdelay *= backoff
            return f(*args, **kwargs)
        return f_retry
    return deco_retry


_DIACRITICS = re.compile(r"[\u064B-\u0652]")
_ALEF = re.compile(r"[أإآٱ]")
_SPACES = re.compile(r"\s+")


def normalize_text(text):
    """Fold Arabic letter variants, drop diacritics/tatweel, lowercase, collapse spaces."""
    if not text or not isinstance(text, str):
        return ""
    t = _DIACRITICS.sub("", text)
    t = _ALEF.sub("ا", t)
    t = t.replace("ى", "ي").replace("ة", "ه")
    t = t.replace("ؤ", "و").replace("ئ", "ي")
    t = t.replace("ـ", "")
    return _SPACES.sub(" ", t).strip().lower()


def escape_like(value: str) -> str:
    # pair with ilike(..., escape="\\")
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
