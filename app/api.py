"""HTTP route definitions for the service."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status

from app.schemas import (
    CleanupRequest,
    CleanupResponse,
    DatabaseWebhookEvent,
    EmailReportRequest,
    EmailReportResponse,
    LiveReading,
    LiveView,
    ReadingModel,
    ReportView,
    SensorSeriesModel,
    SensorStatsModel,
    StatsResponse,
    WebhookAck,
    WindowStartRequest,
    WindowView,
)
from datastore.memory_store import InMemoryReadingStore
from models.errors import (
    EmailDeliveryFailed,
    InvalidTransition,
    InvalidWindow,
    StoreQueryFailed,
)
from services.aggregator import TemperatureStats
from services.dashboard import DashboardService, LiveStatus, build_default_service
from services.report import Report
from services.window_tracker import TrackingWindow
from settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def get_service() -> DashboardService:
    return build_default_service()


def _live_view(service: DashboardService, live: LiveStatus) -> LiveView:
    return LiveView(
        device_id=service.device_id,
        status=live.status,
        subscribed=service.subscribed,
        last_reading=live.last_reading,
        age_seconds=live.age_seconds,
        offline=live.offline,
        offline_after_sec=live.offline_after_sec,
        sensors=[LiveReading.from_reading(reading) for reading in live.rows],
    )


def _window_view(window: TrackingWindow) -> WindowView:
    return WindowView(
        state=window.state,
        mode=window.mode,
        start=window.start,
        end=window.end,
        captured_count=window.captured_count,
        backfilling=window.backfilling,
    )


def _stats_model(stats: TemperatureStats) -> SensorStatsModel:
    return SensorStatsModel(
        count=stats.count,
        min_c=stats.min_c,
        max_c=stats.max_c,
        mean_c=stats.mean_c,
    )


def _report_view(report: Report) -> ReportView:
    return ReportView(
        report_id=report.report_id,
        device_id=report.device_id,
        start=report.start,
        end=report.end,
        interval_seconds=report.interval_seconds,
        time_range_label=report.time_range_label,
        generated_at=report.generated_at,
        captured_count=report.captured_count,
        summary_text=report.summary_text(),
        overall=_stats_model(report.summary.overall),
        series=[
            SensorSeriesModel(
                sensor_name=name,
                sampled=entry.sampled,
                stats=_stats_model(report.summary.per_sensor.get(name, TemperatureStats())),
                readings=[ReadingModel.from_reading(reading) for reading in entry.readings],
            )
            for name, entry in report.series.items()
        ],
    )


def _window_error(exc: Exception) -> HTTPException:
    if isinstance(exc, InvalidWindow):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, InvalidTransition):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /live for the latest readings."}


@router.get("/live", response_model=LiveView, summary="Latest reading per sensor.")
async def get_live(service: DashboardService = Depends(get_service)) -> LiveView:
    return _live_view(service, service.live_status())


@router.post(
    "/live/resume",
    response_model=LiveView,
    summary="Refresh and re-subscribe after a connectivity loss.",
)
async def resume_live(service: DashboardService = Depends(get_service)) -> LiveView:
    await service.resume()
    return _live_view(service, service.live_status())


@router.post(
    "/hooks/readings",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=WebhookAck,
    summary="Receive insert notifications from the hosted database.",
)
async def receive_reading_event(
    event: DatabaseWebhookEvent,
    x_webhook_secret: Optional[str] = Header(default=None),
    service: DashboardService = Depends(get_service),
    settings: Settings = Depends(get_settings),
) -> WebhookAck:
    if settings.webhook_secret and x_webhook_secret != settings.webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret.",
        )
    if event.type.upper() != "INSERT" or event.table != settings.store_table:
        return WebhookAck(accepted=False, detail=f"Ignored {event.type} on {event.table}.")
    if not event.record:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="INSERT event is missing its record.",
        )
    try:
        reading = ReadingModel.model_validate(event.record).to_reading()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    delivered = service.store.feed.publish(reading)
    return WebhookAck(accepted=True, delivered=delivered)


@router.post(
    "/readings",
    status_code=status.HTTP_201_CREATED,
    response_model=ReadingModel,
    summary="Upload a reading directly (in-memory store only).",
)
async def upload_reading(
    payload: ReadingModel,
    service: DashboardService = Depends(get_service),
) -> ReadingModel:
    if not isinstance(service.store, InMemoryReadingStore):
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="Devices upload directly to the hosted database.",
        )
    try:
        reading = payload.to_reading()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    await service.store.insert(reading)
    return ReadingModel.from_reading(reading)


@router.get("/window", response_model=WindowView, summary="Current tracking window.")
async def get_window(service: DashboardService = Depends(get_service)) -> WindowView:
    return _window_view(service.tracker.window())


@router.post("/window/start", response_model=WindowView, summary="Start collecting readings.")
async def start_window(
    payload: WindowStartRequest,
    service: DashboardService = Depends(get_service),
) -> WindowView:
    try:
        window = await service.start_window(payload.mode, payload.start, payload.end)
    except (InvalidWindow, InvalidTransition, StoreQueryFailed) as exc:
        raise _window_error(exc) from exc
    return _window_view(window)


@router.post("/window/stop", response_model=WindowView, summary="Stop collecting readings.")
async def stop_window(service: DashboardService = Depends(get_service)) -> WindowView:
    try:
        window = await service.stop_window()
    except InvalidTransition as exc:
        raise _window_error(exc) from exc
    return _window_view(window)


@router.post("/window/reset", response_model=WindowView, summary="Discard the window.")
async def reset_window(service: DashboardService = Depends(get_service)) -> WindowView:
    try:
        window = await service.reset_window()
    except InvalidTransition as exc:
        raise _window_error(exc) from exc
    return _window_view(window)


@router.get("/report", response_model=ReportView, summary="Sampled report for the window.")
async def get_report(
    interval_seconds: Optional[int] = Query(default=None, gt=0),
    service: DashboardService = Depends(get_service),
) -> ReportView:
    try:
        report = service.build_report(interval_seconds)
    except InvalidTransition as exc:
        raise _window_error(exc) from exc
    return _report_view(report)


@router.get("/report.csv", summary="Download the sampled report as CSV.")
async def download_report(
    interval_seconds: Optional[int] = Query(default=None, gt=0),
    service: DashboardService = Depends(get_service),
) -> Response:
    try:
        report = service.build_report(interval_seconds)
    except InvalidTransition as exc:
        raise _window_error(exc) from exc
    service.archive_report(report)
    return Response(
        content=report.to_csv(),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="temperature-report-{report.report_id}.csv"',
            "X-Report-Id": report.report_id,
        },
    )


@router.get("/reports/{report_id}", summary="Fetch an archived report CSV.")
async def get_archived_report(
    report_id: str,
    service: DashboardService = Depends(get_service),
) -> Response:
    try:
        content = service.load_report_csv(report_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return Response(content=content, media_type="text/csv")


@router.post(
    "/report/email",
    response_model=EmailReportResponse,
    summary="Email the sampled report.",
)
async def email_report(
    payload: EmailReportRequest,
    service: DashboardService = Depends(get_service),
) -> EmailReportResponse:
    try:
        report = await service.email_report(
            payload.email,
            interval_seconds=payload.interval_seconds,
            confirm_large=payload.confirm_large,
        )
    except InvalidTransition as exc:
        raise _window_error(exc) from exc
    except EmailDeliveryFailed as exc:
        code = (
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
            if exc.oversized
            else status.HTTP_502_BAD_GATEWAY
        )
        raise HTTPException(status_code=code, detail=str(exc)) from exc
    return EmailReportResponse(
        success=True,
        report_id=report.report_id,
        time_range_label=report.time_range_label,
    )


@router.post(
    "/admin/cleanup",
    response_model=CleanupResponse,
    summary="Delete readings older than the retention period.",
)
async def cleanup_readings(
    payload: CleanupRequest,
    service: DashboardService = Depends(get_service),
) -> CleanupResponse:
    try:
        result = await service.cleanup(payload.retention_days)
    except StoreQueryFailed as exc:
        LOGGER.error("Cleanup failed", extra={"reason": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to delete old readings: {exc}",
        ) from exc
    return CleanupResponse(deleted=result.deleted, cutoff_date=result.cutoff)


@router.get("/admin/stats", response_model=StatsResponse, summary="Reading retention statistics.")
async def reading_stats(service: DashboardService = Depends(get_service)) -> StatsResponse:
    try:
        stats = await service.stats()
    except StoreQueryFailed as exc:
        LOGGER.error("Stats failed", extra={"reason": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to get statistics: {exc}",
        ) from exc
    return StatsResponse(
        total_count=stats.total_count,
        oldest_reading=stats.oldest_reading,
        newest_reading=stats.newest_reading,
        last_7_days=stats.last_7_days,
        last_30_days=stats.last_30_days,
        older_than_30_days=stats.older_than_30_days,
    )
