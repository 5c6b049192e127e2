"""
Task report exports: CSV, Excel, PDF (summary + task table + photo pages) and a ZIP bundle.
"""
import csv
import io
import os
import uuid
import zipfile
from datetime import datetime
from typing import List, Optional, Tuple

import structlog
from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from PIL import Image as PILImage
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas
from slugify import slugify
from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..models.models import CleaningTask, ServicePoint, TaskStatus
from ..services.serializers import decode_legacy_photos
from ..services.time_rules import day_window, utcnow
from ..storage.provider import StorageProvider


logger = structlog.get_logger(__name__)

COLUMNS = ["Point", "Type", "Address", "Cleaner", "Status", "Scheduled", "Completed"]

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

PHOTO_LABELS = {
    "photo_before": "Before",
    "photo_after": "After",
    "photo_damage": "Damage",
}


def _register_fonts() -> Tuple[str, str]:
    path = settings.report_font_path
    if path and os.path.exists(path):
        try:
            pdfmetrics.registerFont(TTFont("ReportFont", path))
            return "ReportFont", "ReportFont"
        except Exception as e:
            logger.warning("report_font_register_failed", path=path, error=str(e))
    return "Helvetica", "Helvetica-Bold"


def _task_query(db: Session, company_id: Optional[uuid.UUID]):
    q = db.query(CleaningTask).options(
        joinedload(CleaningTask.service_point),
        joinedload(CleaningTask.cleaner),
    )
    if company_id is not None:
        q = q.filter(
            CleaningTask.service_point_id.in_(
                select(ServicePoint.id).where(ServicePoint.company_id == company_id)
            )
        )
    return q


def tasks_for_export(db: Session, company_id: Optional[uuid.UUID] = None) -> List[CleaningTask]:
    """All tasks (optionally one company), newest-updated first."""
    return _task_query(db, company_id).order_by(CleaningTask.updated_at.desc()).all()


def todays_tasks(db: Session, company_id: Optional[uuid.UUID] = None,
                 now: Optional[datetime] = None) -> List[CleaningTask]:
    _, start, end = day_window(now)
    return (
        _task_query(db, company_id)
        .filter(CleaningTask.scheduled_at >= start, CleaningTask.scheduled_at < end)
        .order_by(CleaningTask.updated_at.desc())
        .all()
    )


def task_row(task: CleaningTask) -> List[str]:
    point = task.service_point
    return [
        point.name if point else "",
        point.type if point else "",
        point.address if point else "",
        task.cleaner.username if task.cleaner else "",
        task.status,
        task.scheduled_at.isoformat() if task.scheduled_at else "",
        task.completed_at.isoformat() if task.completed_at else "",
    ]


def build_tasks_csv(tasks: List[CleaningTask]) -> bytes:
    """UTF-8 CSV with a byte order mark so spreadsheet apps detect the encoding."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(COLUMNS)
    for t in tasks:
        writer.writerow(task_row(t))
    return ("\ufeff" + buf.getvalue()).encode("utf-8")


def build_tasks_xlsx(tasks: List[CleaningTask]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Tasks"
    ws.append(COLUMNS)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for t in tasks:
        ws.append(task_row(t))
    widths = [24, 10, 36, 16, 12, 22, 22]
    for idx, width in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = width
    out = io.BytesIO()
    wb.save(out)
    return out.getvalue()


def report_filename(ext: str, prefix: str = "report", company_name: Optional[str] = None,
                    now: Optional[datetime] = None) -> str:
    date_str = (now or utcnow()).date().isoformat()
    parts = [prefix]
    if company_name:
        parts.append(slugify(company_name))
    parts.append(date_str)
    return "_".join(p for p in parts if p) + f".{ext}"


def _collect_photos(tasks: List[CleaningTask], limit: int) -> List[Tuple[CleaningTask, str, str]]:
    photos: List[Tuple[CleaningTask, str, str]] = []
    for t in tasks:
        for slot, label in PHOTO_LABELS.items():
            key = getattr(t, slot)
            if key:
                photos.append((t, label, key))
        for key in decode_legacy_photos(t.photos):
            photos.append((t, "Photo", key))
        if len(photos) >= limit:
            break
    return photos[:limit]


def _image_reader(data: bytes) -> Optional[ImageReader]:
    try:
        im = PILImage.open(io.BytesIO(data))
        if im.mode not in ("RGB", "L"):
            im = im.convert("RGB")
        buf = io.BytesIO()
        im.save(buf, format="JPEG", quality=85)
        buf.seek(0)
        return ImageReader(buf)
    except Exception as e:
        logger.warning("report_photo_decode_failed", error=str(e))
        return None


def build_report_pdf(db: Session, storage: StorageProvider, company_id: Optional[uuid.UUID] = None,
                     now: Optional[datetime] = None) -> bytes:
    """
    Today's report as PDF.

    Args:
        db: Database session
        storage: Where task photos are read from
        company_id: Restrict to one company; None for all
        now: Naive UTC instant (defaults to now)

    Returns:
        PDF bytes: title, date, summary counts, task table, then photo pages
    """
    now = now or utcnow()
    day, start, end = day_window(now)
    font_name, font_bold = _register_fonts()

    point_q = db.query(func.count(ServicePoint.id))
    if company_id is not None:
        point_q = point_q.filter(ServicePoint.company_id == company_id)
    total_points = point_q.scalar() or 0
    tasks = todays_tasks(db, company_id, now)
    completed = sum(1 for t in tasks if t.status == TaskStatus.COMPLETED.value)

    table_tasks = sorted(
        tasks,
        key=lambda t: (t.completed_at is None, -(t.completed_at.timestamp() if t.completed_at else 0)),
    )[: settings.report_task_limit]

    buf = io.BytesIO()
    page_width, page_height = A4
    margin = 50
    c = canvas.Canvas(buf, pagesize=A4)

    y = page_height - margin
    c.setFont(font_bold, 18)
    c.drawCentredString(page_width / 2, y, "FeedbackATM Report")
    y -= 24
    c.setFont(font_name, 10)
    c.drawCentredString(page_width / 2, y, f"Date: {day.isoformat()}")
    y -= 36

    c.setFont(font_bold, 12)
    c.drawString(margin, y, "Today's summary")
    y -= 16
    c.setFont(font_name, 10)
    for line in (
        f"Total points: {total_points}",
        f"Tasks today: {len(tasks)}",
        f"Completed: {completed}",
        f"Pending: {len(tasks) - completed}",
    ):
        c.drawString(margin, y, line)
        y -= 14
    y -= 20

    c.setFont(font_bold, 12)
    c.drawString(margin, y, f"Tasks (latest {settings.report_task_limit})")
    y -= 18
    col_x = [margin, margin + 130, margin + 200, margin + 300, margin + 380]
    headers = ["Point", "Type", "Cleaner", "Status", "Completed"]

    def _header(y_pos: float) -> float:
        c.setFont(font_bold, 8)
        for x, h in zip(col_x, headers):
            c.drawString(x, y_pos, h)
        y_pos -= 6
        c.line(margin, y_pos, page_width - margin, y_pos)
        return y_pos - 12

    y = _header(y)
    c.setFont(font_name, 8)
    for t in table_tasks:
        if y < margin + 20:
            c.showPage()
            y = _header(page_height - margin)
            c.setFont(font_name, 8)
        point = t.service_point
        values = [
            (point.name if point else "")[:24],
            point.type if point else "",
            t.cleaner.username if t.cleaner else "",
            t.status,
            t.completed_at.strftime("%H:%M:%S") if t.completed_at else "",
        ]
        for x, v in zip(col_x, values):
            c.drawString(x, y, v)
        y -= 14
    c.showPage()

    for t, label, key in _collect_photos(tasks, settings.report_photo_limit):
        data = storage.read(key)
        if not data:
            logger.warning("report_photo_missing", key=key, task_id=str(t.id))
            continue
        reader = _image_reader(data)
        if reader is None:
            continue
        point_name = t.service_point.name if t.service_point else ""
        cleaner = t.cleaner.username if t.cleaner else ""
        c.setFont(font_bold, 11)
        c.drawString(margin, page_height - margin, f"{point_name} - {label}")
        c.setFont(font_name, 9)
        c.drawString(margin, page_height - margin - 14, f"{cleaner} {t.status}")
        iw, ih = reader.getSize()
        max_w = page_width - 2 * margin
        max_h = page_height - 2 * margin - 40
        scale = min(max_w / iw, max_h / ih, 1.0)
        w, h = iw * scale, ih * scale
        c.drawImage(reader, margin, page_height - margin - 30 - h, width=w, height=h)
        c.showPage()

    c.save()
    return buf.getvalue()


def build_report_zip(db: Session, storage: StorageProvider, company_id: Optional[uuid.UUID] = None,
                     now: Optional[datetime] = None) -> bytes:
    """ZIP with today's spreadsheet, the PDF report and the raw photo files under photos/."""
    now = now or utcnow()
    tasks = todays_tasks(db, company_id, now)
    xlsx = build_tasks_xlsx(tasks)
    pdf = build_report_pdf(db, storage, company_id, now)

    out = io.BytesIO()
    with zipfile.ZipFile(out, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(report_filename("xlsx", now=now), xlsx)
        zf.writestr(report_filename("pdf", now=now), pdf)
        seen = set()
        for _, _, key in _collect_photos(tasks, settings.report_photo_limit):
            name = os.path.basename(key)
            if not name or name in seen:
                continue
            data = storage.read(key)
            if not data:
                logger.warning("report_photo_missing", key=key)
                continue
            seen.add(name)
            zf.writestr(f"photos/{name}", data)
    return out.getvalue()
