# Services package.
#
# Each module exposes async functions that hold the business rules and
# database access for one area of the site-tracking domain:
#
#   permission_service     - role predicates and per-role data scoping
#   user_service           - CRUD for Profile
#   user_import_export     - CSV export, template and bulk import of profiles
#   project_service        - projects, summaries and cascade delete
#   milestone_service      - milestones, members, progress, invoice readiness
#   task_service           - tasks, assignments, filtered views and stats
#   recurring_task_service - materialising recurring task instances
#   attendance_service     - clock in/out, half-day, leave, daily marking, review
#   budget_service         - wage configs and budget reports
#   invoice_service        - invoices, line items, totals and overdue marking
#   payment_service        - payments and invoice payment status
#   financial_service      - expenses and project/portfolio money roll-ups
#   notification_service   - in-app notifications and automated reminders
#   dashboard_service      - per-worker task counts
#   export_service         - CSV/HTML/XLSX renderings of reports
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency. Services flush, they never commit.
