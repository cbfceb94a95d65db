# ==============================================================================
# SERVICIO DE USUARIOS
# ==============================================================================
# Centraliza toda la lógica de negocio relacionada con usuarios.
#
# - Registro y autenticación (hash werkzeug, nunca texto plano)
# - Edición de perfil: los datos de contacto los cambia el propio usuario;
#   los datos de identidad (nombre, documento, email, REP) quedan en
#   pendingChanges hasta que el admin los aprueba
# - Acciones del admin: verificar, activar, desactivar, borrar (lógico), devolver
#
# Los usuarios NUNCA se borran físicamente: 'DELETE' marca status DELETED.
# ==============================================================================

import logging
from typing import Any, Dict, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from yubarta.errors import ConflictError, NotFoundError, TransitionError, ValidationError
from yubarta.models import (
    ADMIN_GATED_USER_FIELDS,
    SELF_EDITABLE_USER_FIELDS,
    User,
    UserRole,
    UserStatus,
    utcnow,
)
from yubarta.models.entities import format_timestamp
from yubarta.repositories.interfaces import ICollectionRepository

logger = logging.getLogger(__name__)

# Roles que se pueden elegir al registrarse
REGISTRABLE_ROLES = frozenset([UserRole.BUYER.value, UserRole.SELLER.value])

# Estados que impiden iniciar sesión
LOGIN_BLOCKED_STATES = frozenset([UserStatus.DELETED, UserStatus.BLOCKED])

ADMIN_ACTIONS = frozenset(['VERIFY', 'ACTIVATE', 'DEACTIVATE', 'DELETE', 'RETURN', 'BLOCK'])


class UserService:
    """
    Servicio para gestión de usuarios.

    IMPORTANTE: Este servicio contiene TODA la lógica de negocio de usuarios.
    El repositorio sólo persiste; las rutas sólo orquestan
    request -> service -> response.
    """

    def __init__(self, user_repo: ICollectionRepository):
        self.user_repo = user_repo

    # =========================================================================
    # CONSULTAS
    # =========================================================================

    def _load(self, user_id: str) -> User:
        data = self.user_repo.get_by_id(user_id)
        if not data:
            raise NotFoundError('Usuario no encontrado')
        return User.from_dict(data)

    def find_by_email(self, email: str) -> Optional[User]:
        wanted = (email or '').strip().lower()
        for data in self.user_repo.get_all():
            if (data.get('email') or '').strip().lower() == wanted:
                return User.from_dict(data)
        return None

    # =========================================================================
    # REGISTRO Y AUTENTICACIÓN
    # =========================================================================

    def register(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Registra un comprador o proveedor. Queda pendiente de verificación.

        Raises:
            ValidationError: faltan datos o rol inválido
            ConflictError: el email ya está registrado
        """
        errors = []
        name = (data.get('name') or '').strip()
        email = (data.get('email') or '').strip().lower()
        password = data.get('password') or ''
        role = data.get('role') or UserRole.BUYER.value

        if not name:
            errors.append('Nombre requerido')
        if not email or '@' not in email:
            errors.append('Email inválido')
        if len(password) < 4:
            errors.append('La contraseña debe tener al menos 4 caracteres')
        if role not in REGISTRABLE_ROLES:
            errors.append('Rol inválido')
        if errors:
            raise ValidationError(errors)

        if self.find_by_email(email):
            raise ConflictError('El email ya está registrado')

        now = utcnow()
        user = User.from_dict({k: v for k, v in data.items() if k not in ('id', 'status', 'pendingChanges')})
        user.id = ''
        user.name = name
        user.email = email
        user.password = generate_password_hash(password)
        user.role = UserRole(role)
        user.status = UserStatus.PENDING_VERIFICATION
        user.is_verified = False
        user.needs_admin_approval = True
        user.registered_at = now
        user.last_activity = now
        user.pending_changes = {}

        record = user.to_dict()
        record.pop('id')
        saved = User.from_dict(self.user_repo.create(record))
        logger.info("[USUARIOS] Registrado %s (%s)", saved.email, saved.role.value)
        return saved.public_dict()

    def authenticate(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        """
        Verifica credenciales.

        Returns:
            Datos del usuario (sin password) o None si no son válidas
        """
        user = self.find_by_email(email)
        if user is None or user.status in LOGIN_BLOCKED_STATES:
            return None

        stored = user.password or ''
        # Soportar tanto hash como texto plano (legacy)
        if stored.startswith('pbkdf2:') or stored.startswith('scrypt:'):
            if not check_password_hash(stored, password or ''):
                return None
        elif not stored or stored != password:
            return None

        saved = self.user_repo.update(user.id, {'lastActivity': format_timestamp(utcnow())})
        return User.from_dict(saved).public_dict()

    def ensure_admin_account(self, email: str, password: str, name: str = 'Administrador') -> None:
        """Crea la cuenta de administrador si no existe ninguna."""
        if any(d.get('role') == UserRole.ADMIN.value for d in self.user_repo.get_all()):
            return
        now = format_timestamp(utcnow())
        self.user_repo.create({
            'name': name,
            'email': email.strip().lower(),
            'password': generate_password_hash(password),
            'role': UserRole.ADMIN.value,
            'status': UserStatus.ACTIVE.value,
            'isVerified': True,
            'needsAdminApproval': False,
            'registeredAt': now,
            'lastActivity': now,
        })
        logger.warning("[USUARIOS] Creada cuenta admin %s. Cambie la contraseña", email)

    # =========================================================================
    # PERFIL
    # =========================================================================

    def update_profile(self, actor: User, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Aplica cambios de perfil.

        - Campos de contacto: se aplican directo
        - Campos de identidad: el admin los aplica directo; el usuario los
          deja en pendingChanges
        - Cualquier otro campo: error
        """
        if not (actor.is_admin or actor.id == user_id):
            raise TransitionError('No puede editar el perfil de otro usuario')
        user = self._load(user_id)

        invalid = [k for k in changes if k not in SELF_EDITABLE_USER_FIELDS | ADMIN_GATED_USER_FIELDS]
        if invalid:
            raise ValidationError([f'El campo "{k}" no es editable' for k in invalid])

        direct = {k: v for k, v in changes.items() if k in SELF_EDITABLE_USER_FIELDS}
        gated = {k: v for k, v in changes.items() if k in ADMIN_GATED_USER_FIELDS}

        if 'email' in gated:
            gated['email'] = (gated['email'] or '').strip().lower()
            other = self.find_by_email(gated['email'])
            if other is not None and other.id != user_id:
                raise ConflictError('El email ya está registrado')

        if actor.is_admin:
            direct.update(gated)
        elif gated:
            pending = dict(user.pending_changes or {})
            pending.update(gated)
            direct['pendingChanges'] = pending

        if not direct:
            return user.public_dict()
        saved = self.user_repo.update(user_id, direct)
        return User.from_dict(saved).public_dict()

    def decide_pending_change(self, admin: User, user_id: str, field: str, approve: bool) -> Dict[str, Any]:
        """El admin aprueba o descarta un cambio de identidad pendiente."""
        if not admin.is_admin:
            raise TransitionError('Sólo el administrador decide cambios pendientes')
        user = self._load(user_id)
        pending = dict(user.pending_changes or {})
        if field not in pending:
            raise NotFoundError(f'No hay cambio pendiente para "{field}"')

        value = pending.pop(field)
        changes: Dict[str, Any] = {'pendingChanges': pending}
        if approve:
            changes[field] = value
        saved = self.user_repo.update(user_id, changes)
        logger.info("[USUARIOS] Cambio %s de %s %s por %s", field, user_id,
                    'aprobado' if approve else 'rechazado', admin.id)
        return User.from_dict(saved).public_dict()

    # =========================================================================
    # ACCIONES DEL ADMIN
    # =========================================================================

    def admin_action(self, admin: User, user_id: str, action: str, notes: Optional[str] = None) -> Dict[str, Any]:
        """
        VERIFY: verificado y activo. ACTIVATE / DEACTIVATE / BLOCK: cambia estado.
        DELETE: borrado lógico. RETURN: vuelve a verificación con notas.
        """
        if not admin.is_admin:
            raise TransitionError('Sólo el administrador gestiona usuarios')
        action = (action or '').upper()
        if action not in ADMIN_ACTIONS:
            raise ValidationError([f'Acción desconocida "{action}"'])
        if user_id == admin.id and action in ('DELETE', 'DEACTIVATE', 'BLOCK'):
            raise ConflictError('No puede desactivar su propia cuenta')

        self._load(user_id)
        if action == 'VERIFY':
            changes = {'isVerified': True, 'needsAdminApproval': False, 'status': UserStatus.ACTIVE.value}
        elif action == 'ACTIVATE':
            changes = {'status': UserStatus.ACTIVE.value}
        elif action == 'DEACTIVATE':
            changes = {'status': UserStatus.INACTIVE.value}
        elif action == 'BLOCK':
            changes = {'status': UserStatus.BLOCKED.value}
        elif action == 'DELETE':
            changes = {'status': UserStatus.DELETED.value}
        else:
            if not (notes and notes.strip()):
                raise ValidationError(['Debe indicar qué debe corregir el usuario'])
            changes = {
                'status': UserStatus.PENDING_VERIFICATION.value,
                'adminNotes': notes.strip(),
                'needsAdminApproval': True,
                'isVerified': False,
            }

        saved = self.user_repo.update(user_id, changes)
        logger.info("[USUARIOS] %s sobre %s por %s", action, user_id, admin.id)
        return User.from_dict(saved).public_dict()
