# app.py
# FastAPI on AWS Lambda (Function URL) using Mangum
# Endpoints:
# - GET  /health                  -> public health check
# - GET  /records                 -> {date: count} map for the signed-in user (optional ?year=)
# - POST /records                 -> upsert one day, or delete it when count is null
# - GET  /records/export.csv      -> CSV export of the user's days (optional ?year=)
# - GET  /reports/pending         -> previous periods whose report has not been viewed
# - POST /reports                 -> statistics + narrative report for a period

import datetime as dt
import logging
import os
import secrets
from typing import Optional

import boto3
import fastapi
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from mangum import Mangum
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from takeoff_log.config import DEFAULT_AI_TIMEOUT, DEFAULT_MODEL, AIConfig
from takeoff_log.export import records_csv
from takeoff_log.narrative import NarrativeError, NarrativeTimeout, generate_narrative
from takeoff_log.periods import REPORT_TYPES, ReportType, now_utc8_iso, today_utc8
from takeoff_log.records import MAX_COUNT, ensure_not_future, to_str_map
from takeoff_log.report import (
    REPORT_SYSTEM_PROMPT,
    build_analysis_prompt,
    build_report_context,
    combine_report,
    previous_period,
    render_empty_report,
    render_stats_section,
)

from auth import get_current_user
from ddb import ReportViewed, delete_record, get_records, is_viewed, mark_viewed, put_record

# --------- Config (env) ---------
REGION = os.environ.get("AWS_REGION", "us-west-2")
ALLOWED_ORIGIN = os.environ.get("ALLOWED_ORIGIN", "*")  # SPA origin for CORS
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

AI_ENDPOINT = os.environ.get("AI_ENDPOINT")
AI_MODEL = os.environ.get("AI_MODEL", DEFAULT_MODEL)
AI_TIMEOUT = float(os.environ.get("AI_TIMEOUT", DEFAULT_AI_TIMEOUT))
# SSM parameter name for the chat-completions API key; AI_API_KEY wins when set
AI_KEY_PARAM = os.environ.get("AI_KEY_PARAM", "/takeoff/AI_API_KEY")

ssm = boto3.client("ssm", region_name=REGION)

logging.getLogger().setLevel(LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Takeoff Log Backend", version="0.3.0")


# --------- Helpers ---------
def get_ssm_param(name: str, decrypt: bool = True) -> str:
    r = ssm.get_parameter(Name=name, WithDecryption=decrypt)
    return r["Parameter"]["Value"]


def load_ai_config() -> AIConfig:
    api_key = os.environ.get("AI_API_KEY")
    if not api_key and AI_ENDPOINT and AI_KEY_PARAM:
        try:
            api_key = get_ssm_param(AI_KEY_PARAM)
        except (ClientError, BotoCoreError) as e:
            logger.warning("AI key not readable from %s: %s", AI_KEY_PARAM, e)
    return AIConfig(endpoint=AI_ENDPOINT, api_key=api_key, model=AI_MODEL, timeout=AI_TIMEOUT)


def format_errors(errors) -> list:
    return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in errors]


def parse_body(model, body: bytes):
    try:
        return model.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=format_errors(e.errors()))


def year_bounds(year: Optional[int]):
    if year is None:
        return None, None
    return dt.date(year, 1, 1), dt.date(year, 12, 31)


# --------- Models ---------
class RecordWrite(BaseModel):
    date: dt.date
    count: Optional[int] = Field(None, ge=0, le=MAX_COUNT, description="null deletes the day")


class ReportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: ReportType
    period_offset: int = Field(0, le=0, alias="periodOffset")
    force_refresh: bool = Field(False, alias="forceRefresh")
    mark_viewed: bool = Field(False, alias="markViewed")
    allow_stats_only: bool = Field(False, alias="allowStatsOnly")


# --------- CORS (app-level; Function URL CORS is also configured) ---------
@app.middleware("http")
async def cors_middleware(request: Request, call_next):
    if request.method == "OPTIONS":
        resp = JSONResponse({"ok": True})
    else:
        resp = await call_next(request)
    resp.headers["Access-Control-Allow-Origin"] = ALLOWED_ORIGIN
    resp.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
    resp.headers["Access-Control-Allow-Methods"] = "GET, POST"
    return resp


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse({"detail": format_errors(exc.errors())}, status_code=400)


# --------- Routes ---------
@app.get("/health")
async def health():
    return {"ok": True, "ts": dt.datetime.utcnow().isoformat()}


@app.get("/records")
async def records(year: Optional[int] = Query(None, ge=1, le=9999), user=fastapi.Depends(get_current_user)):
    start, end = year_bounds(year)
    try:
        data = get_records(user["sub"], start, end)
    except ClientError:
        logger.exception("Record scan failed for %s", user["sub"])
        raise HTTPException(status_code=500, detail="Failed to load records")
    return {"data": to_str_map(data)}


@app.post("/records")
async def write_record(request: Request, user=fastapi.Depends(get_current_user)):
    req = parse_body(RecordWrite, await request.body())
    try:
        ensure_not_future(req.date, today_utc8())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        if req.count is None:
            delete_record(user["sub"], req.date)
        else:
            put_record(user["sub"], req.date, req.count)
    except ClientError:
        logger.exception("Record write failed for %s on %s", user["sub"], req.date)
        raise HTTPException(status_code=500, detail="Failed to save record")
    return {"ok": True}


@app.get("/records/export.csv")
async def export_records(year: Optional[int] = Query(None, ge=1, le=9999), user=fastapi.Depends(get_current_user)):
    start, end = year_bounds(year)
    try:
        data = get_records(user["sub"], start, end)
    except ClientError:
        logger.exception("Export failed for %s", user["sub"])
        raise HTTPException(status_code=500, detail="Failed to export records")
    fname = f"takeoff-{year}.csv" if year else "takeoff.csv"
    return Response(
        content=records_csv(data),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{fname}"'},
    )


@app.get("/reports/pending")
async def pending_reports(user=fastapi.Depends(get_current_user)):
    today = today_utc8()
    pending = []
    try:
        for report_type in REPORT_TYPES:
            period = previous_period(report_type, today)
            if not is_viewed(user["sub"], report_type, period.key):
                pending.append({"type": report_type, "periodKey": period.key, "label": period.label})
    except ClientError:
        logger.exception("Pending report check failed for %s", user["sub"])
        raise HTTPException(status_code=500, detail="Failed to check reports")
    return {"pendingReports": pending, "aiConfigured": load_ai_config().configured}


@app.post("/reports")
async def create_report(request: Request, user=fastapi.Depends(get_current_user)):
    req = parse_body(ReportRequest, await request.body())
    sub = user["sub"]
    today = today_utc8()

    def fetch_range(start: dt.date, end: dt.date):
        return get_records(sub, start, end)

    try:
        ctx = build_report_context(req.type, today, fetch_range, period_offset=req.period_offset)
    except ClientError:
        logger.exception("Report data load failed for %s", sub)
        raise HTTPException(status_code=500, detail="Failed to generate report")
    period = ctx.period

    narrative = None
    if ctx.record_count == 0:
        report = render_empty_report(period.label, ctx.effective_end if ctx.partial else None)
    else:
        stats_md = render_stats_section(period.label, ctx.stats, ctx.partial)
        ai = load_ai_config()
        if ai.configured:
            prompt = build_analysis_prompt(
                req.type,
                period.label,
                ctx.stats,
                ctx.previous,
                now_utc8_iso(),
                ctx.partial,
                refresh_token=secrets.token_hex(4) if req.force_refresh else None,
            )
            try:
                narrative = await generate_narrative(ai, REPORT_SYSTEM_PROMPT, prompt)
            except NarrativeTimeout:
                logger.warning("Narrative timeout for %s %s", sub, period.key)
                if not req.allow_stats_only:
                    raise HTTPException(status_code=504, detail="AI response timed out, please retry")
            except NarrativeError as e:
                logger.error("Narrative failed for %s %s: %s", sub, period.key, e)
                if not req.allow_stats_only:
                    raise HTTPException(status_code=502, detail=str(e))
        report = combine_report(stats_md, narrative)

    if req.mark_viewed:
        try:
            mark_viewed(
                ReportViewed(
                    sub=sub,
                    report_type=req.type,
                    period_key=period.key,
                    viewed_at=dt.datetime.utcnow().isoformat(),
                )
            )
        except ClientError:
            logger.exception("Could not mark %s %s viewed", sub, period.key)
            raise HTTPException(status_code=500, detail="Failed to mark report viewed")

    return {
        "report": report,
        "period": period.label,
        "periodKey": period.key,
        "stats": ctx.stats.model_dump(mode="json"),
        "partial": ctx.partial.model_dump() if ctx.partial else None,
        "narrative": narrative is not None,
    }


# --------- Handler (Lambda entrypoint) ---------
handler = Mangum(app)
