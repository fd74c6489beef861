"""Pivot endpoints over the ads and CRM databases.

Endpoints:
  POST /api/validation-rate/query     approval / pay / buy rate pivot
  POST /api/validation-rate/details   records behind one rate cell
  POST /api/approval-rate/query       legacy approval rate pivot
  POST /api/marketing/query           ad spend matched against CRM conversions
"""

from __future__ import annotations

from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from attributionpivot.config import default_ads_db_path, default_crm_db_path
from attributionpivot.db import DataSource, SqliteDataSource
from attributionpivot.planner import DEFAULT_PAGE_SIZE, TableFilter
from attributionpivot.report import (
    DetailRequest,
    MarketingRequest,
    PivotRequest,
    get_approval_rate_data,
    get_marketing_data,
    get_rate_details,
    get_validation_rate_data,
)

router = APIRouter()

RateMode = Literal["approval", "pay", "buy"]
PeriodType = Literal["weekly", "biweekly", "monthly"]


def get_crm_source() -> DataSource:
    return SqliteDataSource(default_crm_db_path())


def get_ads_source() -> DataSource:
    return SqliteDataSource(default_ads_db_path())


class PivotQuery(BaseModel):
    start_date: date
    end_date: date
    dimensions: list[str]
    depth: int = 0
    parent_filters: dict[str, str] = Field(default_factory=dict)
    rate_mode: RateMode = "approval"
    period_type: PeriodType = "monthly"

    def pivot_fields(self) -> dict[str, object]:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "dimensions": tuple(self.dimensions),
            "depth": self.depth,
            "parent_filters": dict(self.parent_filters),
            "rate_mode": self.rate_mode,
            "period_type": self.period_type,
        }


class TableFilterModel(BaseModel):
    dimension: str
    operator: Literal["equals", "not_equals", "contains", "not_contains"]
    value: str


class MarketingQuery(PivotQuery):
    filters: list[TableFilterModel] = Field(default_factory=list)
    sort_by: str = "cost"
    sort_direction: Literal["asc", "desc"] = "desc"
    limit: int | None = Field(default=None, ge=1)


class DetailQuery(BaseModel):
    start_date: date
    end_date: date
    dimensions: list[str]
    depth: int = 0
    filters: dict[str, str] = Field(default_factory=dict)
    rate_mode: RateMode = "approval"
    metric: Literal["trials", "approved"] = "trials"
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1)
    legacy: bool = False


@router.post("/validation-rate/query")
async def validation_rate_query(body: PivotQuery, crm: DataSource = Depends(get_crm_source)):
    return await get_validation_rate_data(PivotRequest(**body.pivot_fields()), crm)


@router.post("/validation-rate/details")
async def validation_rate_details(body: DetailQuery, crm: DataSource = Depends(get_crm_source)):
    request = DetailRequest(
        start_date=body.start_date.isoformat(),
        end_date=body.end_date.isoformat(),
        dimensions=tuple(body.dimensions),
        depth=body.depth,
        filters=dict(body.filters),
        rate_mode=body.rate_mode,
        metric=body.metric,
        page=body.page,
        page_size=body.page_size,
    )
    return await get_rate_details(request, crm, legacy=body.legacy)


@router.post("/approval-rate/query")
async def approval_rate_query(body: PivotQuery, crm: DataSource = Depends(get_crm_source)):
    return await get_approval_rate_data(PivotRequest(**body.pivot_fields()), crm)


@router.post("/marketing/query")
async def marketing_query(
    body: MarketingQuery,
    ads: DataSource = Depends(get_ads_source),
    crm: DataSource = Depends(get_crm_source),
):
    request = MarketingRequest(
        **body.pivot_fields(),
        table_filters=tuple(TableFilter(dimension=f.dimension, operator=f.operator, value=f.value) for f in body.filters),
        sort_by=body.sort_by,
        sort_direction=body.sort_direction,
        limit=body.limit,
    )
    return await get_marketing_data(request, ads, crm)
