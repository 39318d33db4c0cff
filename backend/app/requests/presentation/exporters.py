import csv
import enum
import io
from datetime import datetime
from typing import Callable, Dict, List, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

from app.requests.domain.models import MaterialRequest

EXPORT_HEADERS = [
    "Material Name",
    "Quantity",
    "Unit",
    "Status",
    "Priority",
    "Requested By",
    "Requested Date",
    "Notes",
]

UNIT_LABELS: Dict[str, str] = {
    "kg": "Kilograms (kg)",
    "m": "Meters (m)",
    "pieces": "Pieces",
    "liters": "Liters (L)",
    "tons": "Tons",
    "cubic_meters": "Cubic Meters (m³)",
    "square_meters": "Square Meters (m²)",
}

STATUS_LABELS: Dict[str, str] = {
    "pending": "Pending",
    "approved": "Approved",
    "rejected": "Rejected",
    "fulfilled": "Fulfilled",
}

PRIORITY_LABELS: Dict[str, str] = {
    "low": "Low",
    "medium": "Medium",
    "high": "High",
    "urgent": "Urgent",
}

DATE_FORMAT = "%Y-%m-%d %H:%M"


class ExportFormat(str, enum.Enum):
    CSV = "csv"
    EXCEL = "excel"


def format_quantity(quantity: float) -> str:
    # 12.0 -> "12", 2.5 -> "2.5"
    if float(quantity).is_integer():
        return str(int(quantity))
    return str(quantity)


def export_row(request: MaterialRequest) -> List[str]:
    return [
        request.material_name,
        format_quantity(request.quantity),
        UNIT_LABELS.get(request.unit, request.unit),
        STATUS_LABELS.get(request.status, request.status),
        PRIORITY_LABELS.get(request.priority, request.priority),
        request.requester_name,
        request.requested_at.strftime(DATE_FORMAT) if request.requested_at else "",
        request.notes or "",
    ]


def export_to_csv(rows: Sequence[MaterialRequest]) -> bytes:
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)
    for request in rows:
        writer.writerow(export_row(request))
    return output.getvalue().encode("utf-8")


def export_to_excel(rows: Sequence[MaterialRequest]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Material Requests"

    header_font = Font(bold=True)
    header_fill = PatternFill(start_color="F0F0F0", end_color="F0F0F0", fill_type="solid")

    ws.append(EXPORT_HEADERS)
    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal="center")

    for request in rows:
        values = export_row(request)
        values[1] = request.quantity
        ws.append(values)

    widths = {"A": 30, "B": 12, "C": 20, "D": 12, "E": 12, "F": 25, "G": 18, "H": 40}
    for column, width in widths.items():
        ws.column_dimensions[column].width = width

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def export_filename(now: datetime) -> str:
    return f"material-requests-{now.strftime('%Y-%m-%d-%H%M')}"


EXPORT_RENDERERS: Dict[ExportFormat, Callable[[Sequence[MaterialRequest]], bytes]] = {
    ExportFormat.CSV: export_to_csv,
    ExportFormat.EXCEL: export_to_excel,
}

MEDIA_TYPES: Dict[ExportFormat, str] = {
    ExportFormat.CSV: "text/csv; charset=utf-8",
    ExportFormat.EXCEL: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

FILE_EXTENSIONS: Dict[ExportFormat, str] = {
    ExportFormat.CSV: ".csv",
    ExportFormat.EXCEL: ".xlsx",
}
