"""
Downloadable renderings of reports: budget CSV/HTML, Gantt workbook and
printable invoices.

Functions here are pure: they take the dicts produced by the other
services and return ``(filename, content)`` pairs for the routers to
stream.
"""
import csv
import io
import logging
import re
from datetime import datetime
from pathlib import Path

import pandas as pd
from jinja2 import Environment, FileSystemLoader, select_autoescape

from sitetrack.errors import ValidationError
from sitetrack.utils import format_currency

logger = logging.getLogger(__name__)

MEMBER_COLUMNS = [
    "Member Name",
    "Wage Type",
    "Daily Rate",
    "Monthly Salary",
    "Full Days",
    "Half Days",
    "Absent",
    "Task Budget",
    "Monthly Budget",
    "Final Budget",
    "Budget Type",
]
TASK_COLUMNS = ["Date", "Task", "Member", "Attendance", "Daily Rate", "Calculated Amount"]
GANTT_COLUMNS = [
    "Task Name",
    "Description",
    "Status",
    "Start Date",
    "End Date",
    "Duration (days)",
    "Assigned To",
]

_templates = Environment(
    loader=FileSystemLoader(Path(__file__).resolve().parent.parent / "templates"),
    autoescape=select_autoescape(["html"]),
)
_templates.filters["currency"] = format_currency


def safe_filename(name: str | None) -> str:
    return re.sub(r"[^A-Za-z0-9]", "_", name or "")


def _pretty_status(status: str | None) -> str:
    return status.replace("_", " ", 1) if status else "-"


def _parse_datetime(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


# ---------------------------------------------------------------------------
# Budget report
# ---------------------------------------------------------------------------

def _member_rows(report: dict, currency: str) -> list[list]:
    rows = []
    for member in report["member_summaries"]:
        rows.append([
            member["user_name"],
            member["wage_type"],
            format_currency(member["daily_rate"], currency) if member["daily_rate"] else "-",
            format_currency(member["monthly_salary"], currency) if member["monthly_salary"] else "-",
            member["total_full_days"],
            member["total_half_days"],
            member["total_absent_days"],
            format_currency(member["total_task_budget"], currency),
            format_currency(member["monthly_budget"], currency),
            format_currency(member["final_budget"], currency),
            "Attendance-based" if member["has_attendance_data"] else "Monthly-based",
        ])
    return rows


def _task_rows(report: dict, currency: str) -> list[list]:
    return [
        [
            line["date"],
            line["task_title"],
            line["user_name"],
            _pretty_status(line["attendance_status"]),
            format_currency(line["daily_rate"], currency),
            format_currency(line["calculated_amount"], currency),
        ]
        for line in report["task_budgets"]
    ]


def budget_report_csv(report: dict, today: datetime | None = None) -> tuple[str, str]:
    """
    Budget report as CSV: project information, the member summary table
    and, when there are any, the per-attendance task budget lines.
    """
    today = today or datetime.now()
    currency = report.get("currency") or "USD"
    rows: list[list] = [
        [f"Budget Report - {report['project_name'] or ''}"],
        [],
        ["Project Information"],
        ["Project Name", report["project_name"] or ""],
        ["Milestone", report["milestone_name"]],
        ["Start Date", report["start_date"] or "N/A"],
        ["End Date", report["end_date"] or "N/A"],
        ["Total Budget Allocated", format_currency(report["total_budget_allocated"], currency)],
        ["Total Budget Spent", format_currency(report["total_budget_spent"], currency)],
        [],
        ["Member Budget Summary"],
        MEMBER_COLUMNS,
        *_member_rows(report, currency),
        [],
    ]
    task_rows = _task_rows(report, currency)
    if task_rows:
        rows.extend([["Task Budget Details"], TASK_COLUMNS, *task_rows])

    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerows(rows)
    filename = f"budget_report_{safe_filename(report['project_name'])}_{today:%Y-%m-%d}.csv"
    return filename, buffer.getvalue()


def budget_report_html(report: dict, generated_at: datetime | None = None) -> str:
    currency = report.get("currency") or "USD"
    generated_at = generated_at or datetime.now()
    return _templates.get_template("budget_report.html").render(
        report=report,
        currency=currency,
        generated_at=f"{generated_at:%Y-%m-%d %H:%M}",
        member_columns=MEMBER_COLUMNS,
        member_rows=_member_rows(report, currency),
        task_columns=TASK_COLUMNS,
        task_rows=_task_rows(report, currency),
    )


# ---------------------------------------------------------------------------
# Gantt workbook
# ---------------------------------------------------------------------------

def gantt_frames(tasks: list[dict], project_name: str, exported_at: datetime) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Task sheet and summary sheet for the tasks that have both dates."""
    dated = [t for t in tasks if t.get("start_datetime") and t.get("end_datetime")]
    if not dated:
        raise ValidationError("No tasks with dates to export")

    records = []
    status_counts: dict[str, int] = {}
    for task in dated:
        start = _parse_datetime(task["start_datetime"])
        end = _parse_datetime(task["end_datetime"])
        names = ", ".join(a.get("full_name") or "Unknown" for a in task.get("assignees") or [])
        records.append({
            "Task Name": task["title"],
            "Description": task.get("description") or "",
            "Status": _pretty_status(task.get("status")) if task.get("status") else "N/A",
            "Start Date": f"{start:%b %d, %Y}",
            "End Date": f"{end:%b %d, %Y}",
            "Duration (days)": (end.date() - start.date()).days + 1,
            "Assigned To": names or "Unassigned",
        })
        status = task.get("status") or "N/A"
        status_counts[status] = status_counts.get(status, 0) + 1

    summary = [
        {"Field": "Project Name", "Value": project_name},
        {"Field": "Total Tasks", "Value": len(dated)},
        {"Field": "Export Date", "Value": f"{exported_at:%b %d, %Y %I:%M %p}"},
        {"Field": "", "Value": ""},
        {"Field": "Status Summary", "Value": ""},
    ]
    summary.extend({"Field": _pretty_status(s), "Value": n} for s, n in status_counts.items())
    return pd.DataFrame(records, columns=GANTT_COLUMNS), pd.DataFrame(summary, columns=["Field", "Value"])


def gantt_xlsx(tasks: list[dict], project_name: str = "Project", exported_at: datetime | None = None) -> tuple[str, bytes]:
    exported_at = exported_at or datetime.now()
    tasks_df, summary_df = gantt_frames(tasks, project_name, exported_at)

    output = io.BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        tasks_df.to_excel(writer, index=False, sheet_name="Gantt Chart")
        summary_df.to_excel(writer, index=False, sheet_name="Summary")
        widths = {"Gantt Chart": [30, 40, 15, 15, 15, 15, 30], "Summary": [20, 30]}
        for sheet_name, sheet_widths in widths.items():
            sheet = writer.sheets[sheet_name]
            for index, width in enumerate(sheet_widths):
                sheet.column_dimensions[chr(ord("A") + index)].width = width

    logger.info("Exported %d task(s) of %s to Gantt workbook", len(tasks_df), project_name)
    filename = f"Gantt_Chart_{safe_filename(project_name)}_{exported_at:%Y-%m-%d}.xlsx"
    return filename, output.getvalue()


# ---------------------------------------------------------------------------
# Invoice
# ---------------------------------------------------------------------------

def invoice_html(invoice: dict, today: datetime | None = None) -> tuple[str, str]:
    """Printable invoice; *invoice* comes from ``get_invoice_with_context``."""
    today = today or datetime.now()
    html = _templates.get_template("invoice.html").render(
        invoice=invoice,
        currency=invoice.get("currency") or "USD",
    )
    filename = f"Invoice-{safe_filename(invoice['invoice_number'])}-{today:%Y-%m-%d}.html"
    return filename, html
