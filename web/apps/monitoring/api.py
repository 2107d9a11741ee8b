import logging

from django.core.cache import caches
from django.db import connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def _check_db() -> bool:
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        return True
    except Exception:
        logger.exception("health check: database unavailable")
        return False


def _check_cache() -> bool:
    # round-trip through the default alias; region aliases share its backend
    try:
        cache = caches["default"]
        cache.set("health:probe", "1", 5)
        return cache.get("health:probe") == "1"
    except Exception:
        logger.exception("health check: cache unavailable")
        return False


def health_view(_request):
    db_ok = _check_db()
    cache_ok = _check_cache()
    ok = db_ok and cache_ok
    return JsonResponse(
        {"ok": ok, "components": {"db": {"ok": db_ok}, "cache": {"ok": cache_ok}}},
        status=200 if ok else 503,
    )
