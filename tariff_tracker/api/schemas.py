from pydantic import BaseModel
from typing import Optional, Literal

class RunAccepted(BaseModel):
    run_id: str

class DailyIngestRequest(BaseModel):
    date: Optional[str] = None

class BackfillRequest(BaseModel):
    start_date: str
    end_date: str

class StatusResponse(BaseModel):
    run_id: str
    kind: str
    status: Literal['running','succeeded','failed']
    started_at_utc: str
    finished_at_utc: Optional[str] = None
    error_message: Optional[str] = None
    range_start: Optional[str] = None
    range_end: Optional[str] = None
    dates_attempted: Optional[int] = None
    dates_processed: Optional[int] = None

class DailyRow(BaseModel):
    dts_date: str
    tariff_millions: Optional[int] = None
    total_deposits_millions: Optional[int] = None

class YearlyRollup(BaseModel):
    year: int
    tariff_millions_sum: int
    total_deposits_millions_sum: int
    updated_at: str

class SummaryToday(BaseModel):
    last_row: Optional[DailyRow] = None
    yearly: list[YearlyRollup]

class CumulativeRow(BaseModel):
    dts_date: str
    tariff_millions: Optional[int] = None
    cumulative_tariff: int

class MonthlyRow(BaseModel):
    month: str
    tariff_millions_sum: int
    total_deposits_millions_sum: int
    pct_of_total: float
