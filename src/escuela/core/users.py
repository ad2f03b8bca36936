"""User profiles and roles.

Responsibilities:
- Store user profiles in the `users` collection
- Role management (admin, profesor, estudiante)
- Course lists kept on the profile (cursos_inscritos / cursos_asignados)
- Soft delete via the `activo` flag
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Literal, get_args

import structlog

from escuela.db import collections
from escuela.db.document_store import ArrayRemove, ArrayUnion, DocumentStore
from escuela.errors import ConflictError, NotFoundError, ValidationError
from escuela.utils.dates import parse_datetime, to_iso, utc_now
from escuela.utils.validators import validate_email

logger = structlog.get_logger(__name__)

UserRole = Literal["admin", "profesor", "estudiante"]
VALID_ROLES: tuple[str, ...] = get_args(UserRole)


@dataclass
class User:
    """A user profile."""

    id: str
    email: str
    nombre: str
    apellido: str = ""
    rol: UserRole = "estudiante"
    foto_perfil: str | None = None
    fecha_registro: datetime = field(default_factory=utc_now)
    activo: bool = True
    cursos_inscritos: list[str] = field(default_factory=list)
    cursos_asignados: list[str] = field(default_factory=list)

    @property
    def nombre_completo(self) -> str:
        if self.apellido:
            return f"{self.nombre} {self.apellido}"
        return self.nombre

    @property
    def is_admin(self) -> bool:
        return self.rol == "admin"

    @property
    def is_teacher(self) -> bool:
        """Teachers and admins can author and grade."""
        return self.rol in ("profesor", "admin")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "email": self.email,
            "nombre": self.nombre,
            "apellido": self.apellido,
            "rol": self.rol,
            "foto_perfil": self.foto_perfil,
            "fecha_registro": to_iso(self.fecha_registro),
            "activo": self.activo,
            "cursos_inscritos": list(self.cursos_inscritos),
            "cursos_asignados": list(self.cursos_asignados),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=data["id"],
            email=data.get("email", ""),
            nombre=data.get("nombre", ""),
            apellido=data.get("apellido", ""),
            rol=data.get("rol", "estudiante"),
            foto_perfil=data.get("foto_perfil"),
            fecha_registro=parse_datetime(data.get("fecha_registro")) or utc_now(),
            activo=data.get("activo", True),
            cursos_inscritos=list(data.get("cursos_inscritos") or []),
            cursos_asignados=list(data.get("cursos_asignados") or []),
        )


@dataclass
class UserStats:
    """Counts of users by role and status."""

    total: int
    estudiantes: int
    profesores: int
    admins: int
    activos: int
    inactivos: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "estudiantes": self.estudiantes,
            "profesores": self.profesores,
            "admins": self.admins,
            "activos": self.activos,
            "inactivos": self.inactivos,
        }


class UserNotFoundError(NotFoundError):
    """Raised when a user id does not exist."""

    def __init__(self, user_id: str):
        super().__init__("Usuario", user_id)


class InvalidUserError(ValidationError):
    """Raised for invalid role or email."""

    pass


class DuplicateEmailError(ConflictError):
    """Raised when an email is already registered."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"El email ya está registrado: {email}")


# Fields callers may change through update_user
_UPDATABLE_FIELDS = {"email", "nombre", "apellido", "rol", "foto_perfil", "activo"}


class UserService:
    """CRUD and role helpers over the users collection."""

    def __init__(self, store: DocumentStore):
        self._users = store.collection(collections.USERS)

    # -- reads ---------------------------------------------------------------

    def list_users(self) -> list[User]:
        return [User.from_dict(d) for d in self._users.order_by("email").stream()]

    def get_user(self, user_id: str) -> User | None:
        doc = self._users.get(user_id)
        return User.from_dict(doc) if doc else None

    def require_user(self, user_id: str) -> User:
        """Get a user or raise UserNotFoundError."""
        user = self.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def get_user_by_email(self, email: str) -> User | None:
        doc = self._users.where("email", "==", email.strip().lower()).first()
        return User.from_dict(doc) if doc else None

    def get_users_by_ids(self, user_ids: Iterable[str]) -> dict[str, User]:
        """Batch-load users; blank and duplicate ids are ignored."""
        unique_ids = list(dict.fromkeys(uid for uid in user_ids if uid))
        if not unique_ids:
            return {}
        docs = self._users.where("id", "in", unique_ids).stream()
        return {d["id"]: User.from_dict(d) for d in docs}

    def get_users_by_role(self, role: UserRole) -> list[User]:
        self._check_role(role)
        return [User.from_dict(d) for d in self._users.where("rol", "==", role).stream()]

    # -- writes --------------------------------------------------------------

    def create_user(
        self,
        email: str,
        nombre: str,
        apellido: str = "",
        rol: UserRole = "estudiante",
        user_id: str | None = None,
    ) -> User:
        """Create a profile (admin registration: any role).

        Args:
            email: Login email, stored lowercase
            nombre: First name
            apellido: Last name
            rol: Role of the new user
            user_id: Identity-provider uid; generated when omitted

        Raises:
            InvalidUserError: Invalid email or role
            DuplicateEmailError: Email already registered
        """
        email = email.strip().lower()
        if not validate_email(email):
            raise InvalidUserError(f"Email inválido: {email}")
        self._check_role(rol)
        if self.get_user_by_email(email) is not None:
            raise DuplicateEmailError(email)

        user = User(
            id=user_id or self._users.new_id(),
            email=email,
            nombre=nombre.strip(),
            apellido=apellido.strip(),
            rol=rol,
        )
        self._users.set(user.id, user.to_dict())
        logger.info("user_created", user_id=user.id, rol=rol)
        return user

    def register_public(
        self,
        email: str,
        nombre: str,
        apellido: str = "",
        user_id: str | None = None,
    ) -> User:
        """Self-registration always yields a student profile."""
        return self.create_user(email, nombre, apellido, rol="estudiante", user_id=user_id)

    def update_user(self, user_id: str, **changes: Any) -> User:
        """Update profile fields.

        Raises:
            UserNotFoundError: Unknown user
            InvalidUserError: Unknown field, invalid email or role
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise InvalidUserError(f"Campos no editables: {', '.join(sorted(unknown))}")
        if "rol" in changes:
            self._check_role(changes["rol"])
        if "email" in changes:
            changes["email"] = changes["email"].strip().lower()
            if not validate_email(changes["email"]):
                raise InvalidUserError(f"Email inválido: {changes['email']}")

        self.require_user(user_id)
        self._users.update(user_id, changes)
        logger.info("user_updated", user_id=user_id, fields=sorted(changes))
        return self.require_user(user_id)

    def change_role(self, user_id: str, new_role: UserRole) -> User:
        return self.update_user(user_id, rol=new_role)

    def set_active(self, user_id: str, active: bool) -> User:
        return self.update_user(user_id, activo=active)

    def delete_user(self, user_id: str) -> User:
        """Soft delete: profiles are deactivated, never removed."""
        return self.set_active(user_id, False)

    def enroll_in_course(self, student_id: str, course_id: str) -> None:
        self.require_user(student_id)
        self._users.update(student_id, {"cursos_inscritos": ArrayUnion(course_id)})

    def unenroll_from_course(self, student_id: str, course_id: str) -> None:
        self.require_user(student_id)
        self._users.update(student_id, {"cursos_inscritos": ArrayRemove(course_id)})

    def assign_course(self, teacher_id: str, course_id: str) -> None:
        self.require_user(teacher_id)
        self._users.update(teacher_id, {"cursos_asignados": ArrayUnion(course_id)})

    def remove_course(self, teacher_id: str, course_id: str) -> None:
        self.require_user(teacher_id)
        self._users.update(teacher_id, {"cursos_asignados": ArrayRemove(course_id)})

    # -- stats ---------------------------------------------------------------

    def get_user_stats(self) -> UserStats:
        users = self.list_users()
        return UserStats(
            total=len(users),
            estudiantes=sum(1 for u in users if u.rol == "estudiante"),
            profesores=sum(1 for u in users if u.rol == "profesor"),
            admins=sum(1 for u in users if u.rol == "admin"),
            activos=sum(1 for u in users if u.activo),
            inactivos=sum(1 for u in users if not u.activo),
        )

    @staticmethod
    def _check_role(role: str) -> None:
        if role not in VALID_ROLES:
            raise InvalidUserError(f"Rol inválido: {role}")
