# app/services/seed_service.py
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.core.permission_cache import PermissionCache
from app.models.rbac import (
    ALL_ACTIONS,
    ElementType,
    RbacResource,
    RbacResourceAction,
    RbacResourceField,
    RbacRolePermission,
    ResourceCategory,
)
from app.models.user import RoleName

logger = logging.getLogger(__name__)

ADMIN = ResourceCategory.ADMIN.value
HOSPITAL = ResourceCategory.HOSPITAL.value

# (code, name, description, category, path_pattern, parent_code, sort_order, element_type)
# Parents must come before their children.
DEFAULT_RESOURCES = [
    # Platform administration
    ("admin.dashboard", "Admin Dashboard", "Main admin dashboard with overview metrics", ADMIN, "/admin", None, 10, "page"),
    ("admin.hospitals", "Hospitals Management", "View and manage all hospitals", ADMIN, "/admin/hospitals/*", None, 20, "page"),
    ("admin.revenue", "Revenue Dashboard", "Platform-wide revenue analytics", ADMIN, "/admin/revenue", None, 30, "page"),
    ("admin.products", "Products Management", "Manage subscription products and pricing", ADMIN, "/admin/products/*", None, 40, "page"),
    ("admin.subscriptions", "Subscriptions Management", "View and manage hospital subscriptions", ADMIN, "/admin/subscriptions/*", None, 50, "page"),
    ("admin.discounts", "Discounts Management", "Manage discount codes and promotions", ADMIN, "/admin/discounts/*", None, 60, "page"),
    ("admin.compliance", "Compliance Documents", "Manage legal and compliance documents", ADMIN, "/admin/compliance/*", None, 70, "page"),
    ("admin.system", "System Settings", "Platform-wide system configuration", ADMIN, "/admin/system", None, 80, "page"),
    ("admin.specializations", "Specializations", "Medical specializations management", ADMIN, "/admin/specializations", None, 85, "page"),
    ("admin.rbac", "Access Control (RBAC)", "Configure roles and permissions", ADMIN, "/admin/rbac", None, 90, "page"),
    # Hospital pages
    ("hospital.dashboard", "Hospital Dashboard", "Hospital-specific dashboard with metrics", HOSPITAL, "/hospital", None, 100, "page"),
    ("hospital.doctors", "Doctors Management", "View and manage hospital doctors", HOSPITAL, "/hospital/doctors", None, 110, "page"),
    ("hospital.patients", "Patients Management", "View and manage patient records", HOSPITAL, "/hospital/patients/*", None, 120, "page"),
    ("hospital.appointments", "Appointments", "Appointment scheduling and management", HOSPITAL, "/hospital/appointments", None, 125, "page"),
    ("hospital.staff", "Staff Management", "View and manage hospital staff", HOSPITAL, "/hospital/staff", None, 130, "page"),
    ("hospital.licenses", "License Management", "Manage subscription and licenses", HOSPITAL, "/hospital/licenses/*", None, 140, "page"),
    ("hospital.analytics", "Analytics", "Analytics and reporting", HOSPITAL, "/hospital/analytics", None, 145, "page"),
    ("hospital.billing", "Billing & Invoices", "View billing history and invoices", HOSPITAL, "/hospital/billing", None, 150, "page"),
    ("hospital.medical-reports", "Medical Reports", "Medical reports management", HOSPITAL, "/hospital/medical-reports", None, 155, "page"),
    ("hospital.settings", "Hospital Settings", "Configure hospital settings", HOSPITAL, "/hospital/settings", None, 160, "page"),
    # Dashboard sections
    ("hospital.dashboard.kpi", "KPI Cards", "Dashboard KPI summary cards", HOSPITAL, None, "hospital.dashboard", 101, "section"),
    ("hospital.dashboard.kpi.doctors", "Doctors Card", "Active doctors count and pending invites", HOSPITAL, None, "hospital.dashboard.kpi", 102, "card"),
    ("hospital.dashboard.kpi.patients", "Patients Card", "Total patients and new today", HOSPITAL, None, "hospital.dashboard.kpi", 103, "card"),
    ("hospital.dashboard.kpi.staff", "Staff Card", "Active staff count", HOSPITAL, None, "hospital.dashboard.kpi", 104, "card"),
    ("hospital.dashboard.kpi.appointments", "Appointments Card", "Today appointment count", HOSPITAL, None, "hospital.dashboard.kpi", 105, "card"),
    ("hospital.dashboard.charts", "Charts", "Dashboard charts section", HOSPITAL, None, "hospital.dashboard", 110, "section"),
    ("hospital.dashboard.charts.patientsTrend", "Patients Trend", "New vs returning patients", HOSPITAL, None, "hospital.dashboard.charts", 117, "chart"),
    ("hospital.dashboard.charts.appointmentsTrend", "Appointments Trend", "Scheduled vs walk-in appointments", HOSPITAL, None, "hospital.dashboard.charts", 114, "chart"),
    ("hospital.dashboard.quickActions", "Quick Actions", "Dashboard quick action buttons", HOSPITAL, None, "hospital.dashboard", 130, "section"),
    ("hospital.dashboard.quickActions.inviteDoctor", "Invite Doctor", "Quick action to invite a doctor", HOSPITAL, None, "hospital.dashboard.quickActions", 131, "action"),
    ("hospital.dashboard.quickActions.addPatient", "Add Patient", "Quick action to add a patient", HOSPITAL, None, "hospital.dashboard.quickActions", 132, "action"),
    # Doctors
    ("hospital.doctors.inviteButton", "Invite Doctor Button", "Button to invite a new doctor", HOSPITAL, None, "hospital.doctors", 201, "action"),
    ("hospital.doctors.list", "Doctors List", "Table of all doctors", HOSPITAL, None, "hospital.doctors", 202, "table"),
    ("hospital.doctors.search", "Doctor Search", "Search and filter doctors", HOSPITAL, None, "hospital.doctors", 203, "filter"),
    ("hospital.doctors.detail", "Doctor Details", "View and edit individual doctor profiles", HOSPITAL, "/hospital/doctors/*", "hospital.doctors", 204, "page"),
    ("hospital.doctors.detail.overview", "Overview Tab", "Personal and professional details", HOSPITAL, None, "hospital.doctors.detail", 303, "tab"),
    ("hospital.doctors.detail.schedule", "Schedule Tab", "Doctor schedule and time off", HOSPITAL, None, "hospital.doctors.detail", 306, "tab"),
    # Patients
    ("hospital.patients.addButton", "Add Patient Button", "Button to add a new patient", HOSPITAL, None, "hospital.patients", 402, "action"),
    ("hospital.patients.search", "Patient Search", "Search patients by name", HOSPITAL, None, "hospital.patients", 403, "filter"),
    ("hospital.patients.list", "Patients Table", "Table of patients", HOSPITAL, None, "hospital.patients", 404, "table"),
    ("hospital.patients.details", "Patient Details Panel", "Split-view details panel", HOSPITAL, None, "hospital.patients", 405, "section"),
    ("hospital.patients.modal", "Add/Edit Patient Modal", "Patient form modal", HOSPITAL, None, "hospital.patients", 408, "modal"),
    # Staff
    ("hospital.staff.inviteButton", "Invite Staff Button", "Button to invite staff", HOSPITAL, None, "hospital.staff", 501, "action"),
    ("hospital.staff.list", "Staff List", "Table of all staff members", HOSPITAL, None, "hospital.staff", 502, "table"),
    # Appointments
    ("hospital.appointments.schedule", "Schedule Tab", "Appointment schedule view", HOSPITAL, None, "hospital.appointments", 601, "tab"),
    ("hospital.appointments.scheduler", "Scheduler Tab", "Appointment booking scheduler", HOSPITAL, None, "hospital.appointments", 602, "tab"),
]

ACTION_LABELS = {
    "view": ("View", "Can view this resource"),
    "add": ("Add", "Can add new items"),
    "edit": ("Edit", "Can edit existing items"),
    "delete": ("Delete", "Can delete items"),
}

# resource_code -> [(field_code, field_name, field_type, description)]
DEFAULT_FIELDS = {
    "hospital.settings": [
        ("basicInfo", "Basic Information", "section", "Hospital name, address, contact info"),
        ("billingInfo", "Billing Information", "section", "Payment methods and billing address"),
        ("regionalSettings", "Regional Settings", "section", "Timezone, currency, and locale"),
    ],
    "hospital.doctors.detail": [
        ("personalInfo", "Personal Information", "section", "Name, contact, specialty"),
        ("schedule", "Schedule", "section", "Working hours and availability"),
        ("compensation", "Compensation", "section", "Salary and payment information"),
    ],
    "hospital.patients": [
        ("demographics", "Demographics", "section", "Personal and contact information"),
        ("medicalHistory", "Medical History", "section", "Health records and conditions"),
        ("insurance", "Insurance Information", "section", "Insurance and billing details"),
    ],
}

ALL_FIELDS = {"viewable": ["*"], "editable": ["*"]}
VIEW_ALL = {"viewable": ["*"], "editable": []}

# Role defaults: role -> {resource_code: (allowed_actions, field_permissions)}
# SUPER_ADMIN has no rows; it bypasses resolution.
ROLE_PERMISSIONS = {
    RoleName.HOSPITAL_MANAGER: {
        "hospital.dashboard": (["view"], VIEW_ALL),
        "hospital.doctors": (["view", "add", "edit", "delete"], ALL_FIELDS),
        "hospital.doctors.detail": (
            ["view", "edit"],
            {"viewable": ["*"], "editable": ["personalInfo", "schedule", "compensation"]},
        ),
        "hospital.patients": (["view", "add", "edit", "delete"], ALL_FIELDS),
        "hospital.appointments": (["view", "add", "edit", "delete"], ALL_FIELDS),
        "hospital.staff": (["view", "add", "edit", "delete"], ALL_FIELDS),
        "hospital.licenses": (["view", "add", "delete"], VIEW_ALL),
        "hospital.billing": (["view"], VIEW_ALL),
        "hospital.settings": (["view", "edit"], {"viewable": ["*"], "editable": ["basicInfo", "regionalSettings"]}),
    },
    RoleName.HOSPITAL_STAFF: {
        "hospital.dashboard": (["view"], VIEW_ALL),
        "hospital.patients": (["view", "add", "edit"], {"viewable": ["demographics"], "editable": ["demographics"]}),
        "hospital.appointments": (["view", "add", "edit"], ALL_FIELDS),
    },
    RoleName.DOCTOR: {
        "hospital.dashboard": (["view"], VIEW_ALL),
        "hospital.doctors.detail": (["view", "edit"], {"viewable": ["personalInfo", "schedule"], "editable": ["schedule"]}),
        "hospital.patients": (
            ["view", "add", "edit"],
            {"viewable": ["demographics", "medicalHistory"], "editable": ["medicalHistory"]},
        ),
        "hospital.appointments": (["view", "edit"], VIEW_ALL),
    },
}


def seed_resources(db: Session) -> dict[str, RbacResource]:
    """
    Insert missing catalog resources, their CRUD actions and fields.
    Existing rows (including their is_active flag) are left alone.
    Returns a dict mapping resource code -> RbacResource.
    """
    resources_map: dict[str, RbacResource] = {}
    created = 0
    for code, name, description, category, path_pattern, parent_code, sort_order, element_type in DEFAULT_RESOURCES:
        resource = db.query(RbacResource).filter(RbacResource.code == code).first()
        if resource is None:
            resource = RbacResource(
                code=code,
                name=name,
                description=description,
                category=category,
                path_pattern=path_pattern,
                parent_code=parent_code,
                sort_order=sort_order,
                element_type=ElementType(element_type).value,
            )
            db.add(resource)
            db.flush()
            created += 1
        resources_map[code] = resource

        existing_actions = {
            a.action
            for a in db.query(RbacResourceAction).filter(RbacResourceAction.resource_id == resource.id).all()
        }
        for action in ALL_ACTIONS:
            if action in existing_actions:
                continue
            label, action_description = ACTION_LABELS[action]
            db.add(
                RbacResourceAction(
                    resource_id=resource.id,
                    action=action,
                    name=label,
                    description=action_description,
                )
            )

        existing_fields = {
            f.field_code
            for f in db.query(RbacResourceField).filter(RbacResourceField.resource_id == resource.id).all()
        }
        for field_code, field_name, field_type, field_description in DEFAULT_FIELDS.get(code, []):
            if field_code in existing_fields:
                continue
            db.add(
                RbacResourceField(
                    resource_id=resource.id,
                    field_code=field_code,
                    field_name=field_name,
                    field_type=field_type,
                    description=field_description,
                )
            )
    db.flush()
    logger.info(f"RBAC catalog seeded: {created} new resource(s), {len(resources_map)} total")
    return resources_map


def seed_role_permissions(
    db: Session,
    resources_map: dict[str, RbacResource],
    *,
    overwrite: bool = False,
) -> int:
    """
    Insert default role grants. Grants edited by an admin are kept unless
    `overwrite` is set. Returns the number of rows written.
    """
    written = 0
    for role, grants in ROLE_PERMISSIONS.items():
        for code, (actions, field_permissions) in grants.items():
            resource = resources_map.get(code)
            if resource is None:
                logger.warning(f"Skipping default grant for {role.value}: resource '{code}' missing")
                continue

            row = (
                db.query(RbacRolePermission)
                .filter(
                    RbacRolePermission.role == role.value,
                    RbacRolePermission.resource_id == resource.id,
                )
                .first()
            )
            if row is not None and not overwrite:
                continue
            if row is None:
                row = RbacRolePermission(role=role.value, resource_id=resource.id)
                db.add(row)
            row.allowed_actions = [a for a in ALL_ACTIONS if a in actions]
            row.field_permissions = {
                "viewable": list(field_permissions["viewable"]),
                "editable": list(field_permissions["editable"]),
            }
            written += 1
    db.flush()
    logger.info(f"RBAC role defaults seeded: {written} grant(s) written")
    return written


def seed_rbac(
    db: Session,
    cache: Optional[PermissionCache] = None,
    *,
    overwrite_role_defaults: bool = False,
) -> dict:
    """
    Idempotent seed of the catalog and the default role grants. Commits, then
    clears the permission cache when one is given.
    """
    resources_map = seed_resources(db)
    written = seed_role_permissions(db, resources_map, overwrite=overwrite_role_defaults)
    db.commit()
    if cache is not None:
        cache.invalidate()
    return {"resources": len(resources_map), "role_permissions": written}
