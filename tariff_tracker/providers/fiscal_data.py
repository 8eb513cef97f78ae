"""
FiscalData DTS client: deposits/withdrawals of operating cash.

https://fiscaldata.treasury.gov/api-documentation/
No API key. Requests are strictly sequential with a fixed delay between pages.
"""
from __future__ import annotations

from datetime import date

import httpx
import structlog

from ..config import settings
from ..errors import UpstreamFetchError
from ..utils import RateLimiter

log = structlog.get_logger()


class FiscalDataClient:
    def __init__(
        self,
        base_url: str | None = None,
        page_size: int | None = None,
        backfill_page_size: int | None = None,
        timeout: float | None = None,
        backfill_timeout: float | None = None,
        request_delay: float | None = None,
        http: httpx.Client | None = None,
    ):
        self.base_url = base_url or settings.fiscal_base_url
        self.page_size = page_size or settings.fiscal_page_size
        self.backfill_page_size = backfill_page_size or settings.backfill_page_size
        self.timeout = timeout or settings.http_timeout_seconds
        self.backfill_timeout = backfill_timeout or settings.backfill_http_timeout_seconds
        self.request_delay = settings.fiscal_request_delay_seconds if request_delay is None else request_delay
        self.http = http or httpx.Client(headers={"accept": "application/json"})

    def close(self):
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def fetch_page(self, params: dict, *, timeout: float, target: str) -> dict:
        stage = f"fetch_page_{params.get('page[number]', 1)}"
        try:
            resp = self.http.get(self.base_url, params=params, timeout=timeout)
        except httpx.HTTPError as exc:
            raise UpstreamFetchError(f"{exc.__class__.__name__}: {exc}", stage=stage, target_date=target) from exc
        if resp.status_code != 200:
            raise UpstreamFetchError(
                resp.text[:300] or "unexpected status",
                stage=stage,
                target_date=target,
                status_code=resp.status_code,
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise UpstreamFetchError(f"invalid JSON: {exc}", stage=stage, target_date=target) from exc
        if not isinstance(body, dict):
            raise UpstreamFetchError("response body is not an object", stage=stage, target_date=target)
        return body

    def _paginate(self, filter_expr: str, *, page_size: int, timeout: float, target: str) -> list[dict]:
        limiter = RateLimiter(self.request_delay)
        rows: list[dict] = []
        page = 1
        while True:
            limiter.wait()
            body = self.fetch_page(
                {"filter": filter_expr, "page[size]": page_size, "page[number]": page},
                timeout=timeout,
                target=target,
            )
            data = body.get("data") or []
            rows.extend(data)
            total_pages = ((body.get("meta") or {}).get("pagination") or {}).get("total_pages")
            log.debug("fiscal_page_fetched", target_date=target, page=page, rows=len(data), total_pages=total_pages)
            if not data:
                break
            if total_pages:
                if page >= int(total_pages):
                    break
            elif len(data) < page_size:
                break
            page += 1
        return rows

    def fetch_day(self, day: date) -> list[dict]:
        target = day.isoformat()
        return self._paginate(
            f"record_date:eq:{target}",
            page_size=self.page_size,
            timeout=self.timeout,
            target=target,
        )

    def fetch_range(self, start: date, end: date) -> list[dict]:
        target = f"{start.isoformat()}..{end.isoformat()}"
        rows = self._paginate(
            f"record_date:gte:{start.isoformat()},record_date:lte:{end.isoformat()}",
            page_size=self.backfill_page_size,
            timeout=self.backfill_timeout,
            target=target,
        )
        log.info("fiscal_range_fetched", target_date=target, rows=len(rows))
        return rows
