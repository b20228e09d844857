"""Report data route; the response shape depends on the caller's role."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from canteen.services.auth import current_user_id, get_current_user
from canteen.services.report_service import ReportService

router = APIRouter(prefix="/api/reports")


@router.get("/data")
async def report_data(
    user: dict = Depends(get_current_user),
    dateRange: str | None = Query(None),
    startDate: str | None = Query(None),
    endDate: str | None = Query(None),
):
    try:
        data = ReportService().report_data(
            current_user_id(user), user.get("role"), dateRange, startDate, endDate
        )
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return JSONResponse(content=data)
