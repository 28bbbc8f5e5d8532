"""Spreadsheet export of every trip for the admin surface."""

import logging
from io import BytesIO
from typing import Tuple

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from sqlalchemy.orm import Session, joinedload

from models.Trip import Trip, TripStatus, derive_status
from utils.time_utils import today, utcnow

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

HEADERS = [
    "#", "Title", "Owner", "Owner Email", "Destination", "Start", "End", "Status",
    "Privacy", "Budget", "Currency", "Itinerary Cost", "Items", "Cities", "Featured", "Created",
]
COLUMN_WIDTHS = [5, 30, 22, 30, 25, 12, 12, 14, 10, 14, 10, 15, 8, 8, 10, 18]

STATUS_COLORS = {
    TripStatus.planning.value: "E5E7EB",     # Grey
    TripStatus.upcoming.value: "DBEAFE",     # Blue
    TripStatus.in_progress.value: "FEF3C7",  # Yellow
    TripStatus.completed.value: "D1FAE5",    # Green
}


def build_trips_workbook(db: Session) -> Tuple[BytesIO, str]:
    """Render all trips into an xlsx file; returns (file, filename)."""
    trips = (
        db.query(Trip)
        .options(joinedload(Trip.owner))
        .order_by(Trip.created_at.desc(), Trip.id.desc())
        .all()
    )
    on = today()
    generated = utcnow()

    wb = Workbook()
    ws = wb.active
    ws.title = "Trips"

    header_fill = PatternFill(start_color="4F46E5", end_color="4F46E5", fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF", size=12)
    header_alignment = Alignment(horizontal="center", vertical="center")
    border_style = Border(
        left=Side(style='thin', color='D1D5DB'),
        right=Side(style='thin', color='D1D5DB'),
        top=Side(style='thin', color='D1D5DB'),
        bottom=Side(style='thin', color='D1D5DB')
    )
    last_column = get_column_letter(len(HEADERS))

    # Title row
    ws.merge_cells(f'A1:{last_column}1')
    title_cell = ws['A1']
    title_cell.value = "GlobeTrotter - All Trips"
    title_cell.font = Font(bold=True, size=16, color="1F2937")
    title_cell.alignment = Alignment(horizontal="center", vertical="center")
    title_cell.fill = PatternFill(start_color="F3F4F6", end_color="F3F4F6", fill_type="solid")
    ws.row_dimensions[1].height = 30

    # Info row
    ws.merge_cells(f'A2:{last_column}2')
    info_cell = ws['A2']
    info_cell.value = f"Generated: {generated.strftime('%Y-%m-%d %H:%M')} UTC  |  Trips: {len(trips)}"
    info_cell.font = Font(size=10, color="6B7280")
    info_cell.alignment = Alignment(horizontal="center", vertical="center")
    ws.row_dimensions[2].height = 20

    for col_num, header in enumerate(HEADERS, 1):
        cell = ws.cell(row=4, column=col_num)
        cell.value = header
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = header_alignment
        cell.border = border_style
    ws.row_dimensions[4].height = 25

    status_counts = {status.value: 0 for status in TripStatus}
    for idx, trip in enumerate(trips, 1):
        row = idx + 4
        status = derive_status(trip, on).value
        status_counts[status] += 1
        row_data = [
            idx,
            trip.title,
            trip.owner.full_name if trip.owner else "",
            trip.owner.email if trip.owner else "",
            trip.destination or "",
            trip.start_date.isoformat() if trip.start_date else "",
            trip.end_date.isoformat() if trip.end_date else "",
            status.replace('-', ' ').title(),
            trip.privacy.value.title(),
            trip.budget if trip.budget is not None else "",
            trip.currency.value,
            trip.total_cost or 0,
            trip.activity_count or 0,
            trip.city_count or 0,
            "Yes" if trip.is_featured else "No",
            trip.created_at.strftime('%Y-%m-%d %H:%M') if trip.created_at else "",
        ]
        fill = PatternFill(start_color=STATUS_COLORS[status], end_color=STATUS_COLORS[status], fill_type="solid")
        for col_num, value in enumerate(row_data, 1):
            cell = ws.cell(row=row, column=col_num)
            cell.value = value
            cell.border = border_style
            cell.alignment = Alignment(horizontal="left" if col_num in [2, 3, 4, 5] else "center", vertical="center")
            cell.fill = fill
            if col_num == 8:
                cell.font = Font(bold=True)
        ws.row_dimensions[row].height = 20

    # Summary row
    summary_row = len(trips) + 6
    ws.merge_cells(f'A{summary_row}:H{summary_row}')
    summary_cell = ws[f'A{summary_row}']
    summary_cell.value = "Total: {} | Planning: {} | Upcoming: {} | In Progress: {} | Completed: {}".format(
        len(trips),
        status_counts[TripStatus.planning.value],
        status_counts[TripStatus.upcoming.value],
        status_counts[TripStatus.in_progress.value],
        status_counts[TripStatus.completed.value],
    )
    summary_cell.font = Font(bold=True, size=11)
    summary_cell.alignment = Alignment(horizontal="center", vertical="center")
    summary_cell.fill = PatternFill(start_color="E5E7EB", end_color="E5E7EB", fill_type="solid")
    ws.row_dimensions[summary_row].height = 25

    for col_num, width in enumerate(COLUMN_WIDTHS, 1):
        ws.column_dimensions[get_column_letter(col_num)].width = width

    excel_file = BytesIO()
    wb.save(excel_file)
    excel_file.seek(0)

    filename = f"GlobeTrotter_Trips_{generated.strftime('%Y%m%d')}.xlsx"
    logging.info("admin.export_excel trips=%s", len(trips))
    return excel_file, filename
