"""
Auth Models — tenants, users, roles, user_roles.

Authentication itself happens outside this service (an identity provider
issues bearer tokens). These tables hold the identities and role
assignments the workflow engine consults when deciding who may act on a
participant's current step.
"""

from datetime import datetime, timezone

from app.models import db

# ── Stable role names shared with step authoring ─────────────────────────────

ROLE_ADMIN = "admin"
ROLE_FIRST_VALIDATOR = "first-validator"
ROLE_SECOND_VALIDATOR = "second-validator"
ROLE_PRINTER = "printer"
ROLE_MOFA_PRINTER = "mofa-printer"

SYSTEM_ROLES = {
    ROLE_ADMIN: "Administrator",
    ROLE_FIRST_VALIDATOR: "First Validator",
    ROLE_SECOND_VALIDATOR: "Second Validator",
    ROLE_PRINTER: "Printer",
    ROLE_MOFA_PRINTER: "MOFA Printer",
}


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS
# ═══════════════════════════════════════════════════════════════
class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    users = db.relationship("User", back_populates="tenant", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    email = db.Column(db.String(200), nullable=False)
    full_name = db.Column(db.String(200))
    status = db.Column(db.String(20), default="active")  # active, inactive, suspended
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Composite unique: same email can exist in different tenants
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        db.Index("ix_users_tenant_id", "tenant_id"),
    )

    # Relationships
    tenant = db.relationship("Tenant", back_populates="users")
    user_roles = db.relationship(
        "UserRole", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan", foreign_keys="UserRole.user_id",
    )

    def to_dict(self, include_roles=False):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "full_name": self.full_name,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_roles:
            d["roles"] = self.role_names
        return d

    @property
    def role_names(self):
        """List of role names for this user."""
        return [ur.role.name for ur in self.user_roles.all()]

    @property
    def role_ids(self):
        return [ur.role_id for ur in self.user_roles.all()]


# ═══════════════════════════════════════════════════════════════
# 3. ROLES
# ═══════════════════════════════════════════════════════════════
class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    display_name = db.Column(db.String(200))
    is_system = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    user_roles = db.relationship("UserRole", back_populates="role", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "is_system": self.is_system,
        }


# ═══════════════════════════════════════════════════════════════
# 4. USER_ROLES (Junction table)
# ═══════════════════════════════════════════════════════════════
class UserRole(db.Model):
    __tablename__ = "user_roles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role_id = db.Column(
        db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    assigned_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("user_id", "role_id", name="uq_user_role"),
    )

    # Relationships
    user = db.relationship("User", back_populates="user_roles", foreign_keys=[user_id])
    role = db.relationship("Role", back_populates="user_roles")


def ensure_system_roles() -> list[Role]:
    """Create any missing system roles. Flushes; caller commits."""
    existing = {r.name: r for r in Role.query.filter(Role.name.in_(SYSTEM_ROLES)).all()}
    created = []
    for name, display_name in SYSTEM_ROLES.items():
        if name in existing:
            continue
        role = Role(name=name, display_name=display_name, is_system=True)
        db.session.add(role)
        created.append(role)
    db.session.flush()
    return created
