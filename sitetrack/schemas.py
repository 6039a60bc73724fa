from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sitetrack.utils import to_naive_utc

Role = Literal["admin", "supervisor", "worker", "client"]
UserStatus = Literal["active", "inactive"]
WageType = Literal["daily", "monthly"]
ProjectStatus = Literal["active", "completed", "on_hold", "cancelled"]
Currency = Literal["USD", "AED"]
MilestoneStatus = Literal["planned", "active", "completed", "on_hold", "cancelled"]
TaskStatus = Literal["todo", "in_progress", "blocked", "done", "cancelled"]
TaskType = Literal["general", "attendance"]
AttendanceStatus = Literal["full_day", "half_day", "absent"]
LeaveType = Literal["sick", "vacation", "personal"]
InvoiceStatus = Literal["draft", "pending", "paid", "partial", "overdue", "cancelled"]
PaymentMethod = Literal["cash", "check", "bank_transfer", "credit_card", "online", "other"]
ExpenseCategory = Literal["materials", "equipment", "transport", "labor", "permits", "other"]


class _NaiveUTCModel(BaseModel):
    """Stores every datetime field as naive UTC, matching the DB columns."""

    @field_validator("*", mode="after")
    @classmethod
    def _strip_tz(cls, value):
        if isinstance(value, datetime):
            return to_naive_utc(value)
        return value


# --- Auth ---

class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: int
    role: Role


# --- Profile ---

class ProfileBase(BaseModel):
    full_name: str = Field(max_length=200)
    email: str = Field(max_length=255, pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    phone: str | None = None
    role: Role = "worker"
    status: UserStatus = "active"
    hourly_rate: float = Field(0, ge=0)
    wage_type: WageType = "daily"
    daily_rate: float | None = Field(None, ge=0)
    monthly_salary: float | None = Field(None, ge=0)
    default_working_days_per_month: int = Field(26, ge=1, le=31)


class ProfileCreate(ProfileBase):
    password: str | None = Field(None, min_length=8)


class ProfileUpdate(BaseModel):
    full_name: str | None = Field(None, max_length=200)
    phone: str | None = None
    role: Role | None = None
    status: UserStatus | None = None
    password: str | None = Field(None, min_length=8)
    hourly_rate: float | None = Field(None, ge=0)
    wage_type: WageType | None = None
    daily_rate: float | None = Field(None, ge=0)
    monthly_salary: float | None = Field(None, ge=0)
    default_working_days_per_month: int | None = Field(None, ge=1, le=31)


# --- Project ---

class ProjectBase(BaseModel):
    name: str = Field(max_length=200)
    description: str | None = None
    site_location: str | None = Field(None, max_length=200)
    site_address: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    total_budget: float = Field(0, ge=0)
    received_amount: float = Field(0, ge=0)
    status: ProjectStatus = "active"
    currency: Currency = "USD"


class ProjectCreate(ProjectBase):
    pass


class ProjectUpdate(BaseModel):
    name: str | None = Field(None, max_length=200)
    description: str | None = None
    site_location: str | None = Field(None, max_length=200)
    site_address: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    total_budget: float | None = Field(None, ge=0)
    received_amount: float | None = Field(None, ge=0)
    status: ProjectStatus | None = None
    currency: Currency | None = None


# --- Milestone ---

class MilestoneCreate(BaseModel):
    project_id: int
    name: str = Field(max_length=200)
    description: str | None = None
    budget: float = Field(0, ge=0)
    start_date: date | None = None
    end_date: date | None = None
    status: MilestoneStatus = "active"


class MilestoneUpdate(BaseModel):
    name: str | None = Field(None, max_length=200)
    description: str | None = None
    budget: float | None = Field(None, ge=0)
    start_date: date | None = None
    end_date: date | None = None
    status: MilestoneStatus | None = None


class MemberCreate(BaseModel):
    user_id: int
    role: Role = "worker"


# --- Task ---

class RecurrenceConfig(BaseModel):
    """Recurrence settings; camelCase keys are accepted as aliases."""

    type: Literal["daily", "weekly", "monthly", "custom"]
    interval: int = Field(1, ge=1)
    days_of_week: list[int] | None = Field(None, alias="daysOfWeek")
    day_of_month: int | None = Field(None, alias="dayOfMonth", ge=1, le=31)
    end_date: date | None = Field(None, alias="endDate")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("days_of_week")
    @classmethod
    def _check_weekdays(cls, value: list[int] | None) -> list[int] | None:
        if value is not None and any(d < 0 or d > 6 for d in value):
            raise ValueError("days_of_week entries must be between 0 (Sunday) and 6 (Saturday)")
        return value


class TaskBase(_NaiveUTCModel):
    title: str = Field(max_length=300)
    description: str | None = None
    type: TaskType = "general"
    status: TaskStatus = "todo"
    billable: bool = True
    estimated_hours: float | None = Field(None, ge=0)
    start_datetime: datetime | None = None
    end_datetime: datetime | None = None
    geo_lat: float | None = Field(None, ge=-90, le=90)
    geo_lng: float | None = Field(None, ge=-180, le=180)
    geo_radius_m: int | None = Field(None, gt=0)
    recurrence: RecurrenceConfig | None = None


class TaskCreate(TaskBase):
    milestone_id: int
    assignee_ids: list[int] = []
    is_half_day: bool = False
    is_leave: bool = False
    leave_type: LeaveType = "vacation"

    @model_validator(mode="after")
    def _check_attendance_flags(self):
        if self.is_half_day and self.is_leave:
            raise ValueError("A task cannot be both half-day and leave")
        return self


class TaskUpdate(_NaiveUTCModel):
    title: str | None = Field(None, max_length=300)
    description: str | None = None
    type: TaskType | None = None
    status: TaskStatus | None = None
    billable: bool | None = None
    estimated_hours: float | None = Field(None, ge=0)
    start_datetime: datetime | None = None
    end_datetime: datetime | None = None
    geo_lat: float | None = Field(None, ge=-90, le=90)
    geo_lng: float | None = Field(None, ge=-180, le=180)
    geo_radius_m: int | None = Field(None, gt=0)
    recurrence: RecurrenceConfig | None = None
    assignee_ids: list[int] | None = None


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class TaskAssign(BaseModel):
    user_ids: list[int]


# --- Attendance ---

class ClockIn(BaseModel):
    task_id: int
    lat: float | None = None
    lng: float | None = None


class HalfDayCreate(_NaiveUTCModel):
    user_id: int
    task_id: int
    start: datetime | None = None


class LeaveCreate(BaseModel):
    user_id: int
    task_id: int
    leave_type: LeaveType = "vacation"


class DailyAttendanceMark(BaseModel):
    user_id: int
    milestone_id: int
    work_date: date
    status: AttendanceStatus
    task_id: int | None = None


class AttendanceReject(BaseModel):
    reason: str | None = None


class BudgetAttendanceCreate(BaseModel):
    user_id: int
    task_id: int
    status: AttendanceStatus
    work_date: date


class AttendanceStatusUpdate(BaseModel):
    status: AttendanceStatus


# --- Budget ---

class WageConfigUpdate(BaseModel):
    wage_type: WageType
    daily_rate: float | None = Field(None, ge=0)
    monthly_salary: float | None = Field(None, ge=0)
    working_days_per_month: int | None = Field(None, ge=1, le=31)
    milestone_id: int | None = None


# --- Invoice ---

class InvoiceItemIn(BaseModel):
    item_type: Literal["wage", "expense", "custom"] = "custom"
    description: str
    quantity: float = Field(1, gt=0)
    rate: float = Field(0, ge=0)
    amount: float | None = Field(None, ge=0)
    reference_id: int | None = None
    reference_type: Literal["task", "expense", "none"] = "none"


class InvoiceCreate(BaseModel):
    milestone_id: int
    invoice_number: str | None = Field(None, max_length=30)
    issue_date: date | None = None
    due_date: date | None = None
    status: InvoiceStatus = "pending"
    tax_rate: float = Field(0, ge=0, le=100)
    client_name: str | None = None
    client_email: str | None = None
    client_address: str | None = None
    notes: str | None = None
    payment_terms: str = "Net 30"
    items: list[InvoiceItemIn] = []


class InvoiceUpdate(BaseModel):
    issue_date: date | None = None
    due_date: date | None = None
    status: InvoiceStatus | None = None
    tax_rate: float | None = Field(None, ge=0, le=100)
    client_name: str | None = None
    client_email: str | None = None
    client_address: str | None = None
    notes: str | None = None
    payment_terms: str | None = None
    items: list[InvoiceItemIn] | None = None


# --- Payment ---

class PaymentCreate(BaseModel):
    invoice_id: int
    payment_amount: float = Field(gt=0)
    payment_date: date | None = None
    payment_method: PaymentMethod = "bank_transfer"
    transaction_reference: str | None = None
    notes: str | None = None


class PaymentUpdate(BaseModel):
    payment_amount: float | None = Field(None, gt=0)
    payment_date: date | None = None
    payment_method: PaymentMethod | None = None
    transaction_reference: str | None = None
    notes: str | None = None


# --- Expense ---

class ExpenseCreate(BaseModel):
    project_id: int | None = None
    milestone_id: int | None = None
    expense_category: ExpenseCategory = "other"
    description: str
    amount: float = Field(gt=0)
    expense_date: date | None = None
    vendor_name: str | None = None
    receipt_url: str | None = None
    payment_method: str | None = None
    assigned_to: int | None = None

    @model_validator(mode="after")
    def _check_owner(self):
        if (self.project_id is None) == (self.milestone_id is None):
            raise ValueError("Exactly one of project_id or milestone_id is required")
        return self


class ExpenseUpdate(BaseModel):
    expense_category: ExpenseCategory | None = None
    description: str | None = None
    amount: float | None = Field(None, gt=0)
    expense_date: date | None = None
    vendor_name: str | None = None
    receipt_url: str | None = None
    payment_method: str | None = None
    assigned_to: int | None = None


# --- Notification ---

class NotificationCreate(BaseModel):
    user_id: int
    title: str = Field(max_length=200)
    body: str | None = None
    payload: dict | None = None


# --- Pagination ---

class PaginatedResponse(BaseModel):
    items: list
    total: int
    page: int
    page_size: int
    pages: int


# --- Metrics ---

class MetricsResponse(BaseModel):
    total_profiles: int
    total_projects: int
    active_projects: int
    total_tasks: int
    open_tasks: int
    pending_attendance: int
    outstanding_invoices: int
    cache_info: dict = {}
