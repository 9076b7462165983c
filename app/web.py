from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from models.timeutils import c_to_f, format_local
from services.dashboard import DashboardService, build_default_service


templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))
templates.env.filters["local_time"] = format_local
templates.env.filters["fahrenheit"] = c_to_f


def get_service() -> DashboardService:
    return build_default_service()


router = APIRouter(include_in_schema=False)


@router.get("/ui", name="ui_index", response_class=HTMLResponse)
async def ui_index(
    request: Request,
    service: DashboardService = Depends(get_service),
) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "ui/index.html",
        {
            "device_id": service.device_id,
            "time_zone": service.time_zone,
            "live": service.live_status(),
            "window": service.tracker.window(),
            "last_report_id": service.last_report_id,
        },
    )
