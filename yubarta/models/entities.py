# ==============================================================================
# ENTIDADES DEL DOMINIO - Definiciones de dataclasses
# ==============================================================================
# Cada entidad representa un concepto del negocio.
# Los atributos Python van en snake_case; el formato de intercambio con el
# backend usa los nombres camelCase históricos (mezcla español/inglés).
# La conversión se hace en WireEntity.to_dict / from_dict.
# ==============================================================================

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union


# ==============================================================================
# ENUMERACIONES - Estados y tipos válidos
# ==============================================================================

class UserRole(str, Enum):
    """Roles de usuario."""
    BUYER = "BUYER"
    SELLER = "SELLER"
    ADMIN = "ADMIN"


class UserStatus(str, Enum):
    """Estados de cuenta."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DELETED = "DELETED"          # Borrado lógico, nunca físico
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    BLOCKED = "BLOCKED"


class RequirementStatus(str, Enum):
    """Estados de un Requerimiento (Sourcing, M1)."""
    PENDING_ADMIN = "Pendiente Admin"
    ACTIVE = "Activo"
    PENDING_EDIT = "Pendiente Edicion"
    PENDING_DELETION = "Pendiente Eliminacion"
    COMPLETED = "Completado"
    PENDING_QUANTITY_INCREASE = "Pendiente Aumento Cantidad"
    CANCELLED = "Cancelado"
    REJECTED = "Rechazado"
    HIDDEN_BY_ADMIN = "Oculto por Admin"
    PENDING_BUYER_APPROVAL = "Pendiente Aprobación Comprador"
    WAITING_FOR_OWNER_EDIT_APPROVAL = "Esperando Aprobación Edición Dueño"


class OfferStatus(str, Enum):
    """Estados de una Oferta de proveedor (Sourcing, M1)."""
    PENDING_ADMIN = "Pendiente Admin"
    PENDING_BUYER = "Pendiente Comprador"
    ACCEPTED = "Aprobada"
    REJECTED = "Rechazada"
    PENDING_EDIT = "Pendiente Edicion"
    PENDING_DELETION = "Pendiente Eliminacion"
    PENDING_SELLER_ACTION = "Pendiente Acción Vendedor"
    HIDDEN_BY_ADMIN = "Oculto por Admin"
    PENDING_SELLER_APPROVAL = "Pendiente Aprobación Vendedor"
    WAITING_FOR_OWNER_EDIT_APPROVAL = "Esperando Aprobación Edición Dueño"


class ListingStatus(str, Enum):
    """Estados de una Publicación (Marketplace, M2)."""
    PENDING_ADMIN = "En Revisión"
    ACTIVE = "Publicado"
    REJECTED = "Rechazado"
    SOLD = "Vendido"
    HIDDEN = "Oculto"            # Pausada por el vendedor
    PENDING_SELLER_APPROVAL = "Pendiente Aprobación Vendedor"
    WAITING_FOR_OWNER_EDIT_APPROVAL = "Esperando Aprobación Edición Dueño"
    HIDDEN_BY_ADMIN = "Archivado por Admin"


class PurchaseOfferStatus(str, Enum):
    """Estados de una Oferta de compra (Marketplace, M2)."""
    PENDING_ADMIN = "Revisión Admin"
    PENDING_SELLER = "Revisión Vendedor"
    ACCEPTED = "Aceptada"
    REJECTED = "Rechazada"
    PENDING_BUYER_APPROVAL = "Pendiente Aprobación Comprador"
    HIDDEN_BY_ADMIN = "Archivado por Admin"


class LogAuthor(str, Enum):
    """Autor de una entrada del historial de negociación."""
    BUYER = "BUYER"
    ADMIN = "ADMIN"
    SELLER = "SELLER"


class LogEventType(str, Enum):
    """Tipos de evento del historial de negociación."""
    BUYER_REJECTION = "BUYER_REJECTION"
    ADMIN_FEEDBACK = "ADMIN_FEEDBACK"
    SELLER_RESPONSE = "SELLER_RESPONSE"
    ADMIN_REJECTION = "ADMIN_REJECTION"
    ADMIN_RESPONSE = "ADMIN_RESPONSE"


# Campos de fecha-hora que viajan como ISO-8601 y se parsean al recibir
TIMESTAMP_FIELDS = frozenset(['created_at', 'timestamp', 'registered_at', 'last_activity'])


# ==============================================================================
# CONVERSIÓN A FORMATO DE INTERCAMBIO
# ==============================================================================

def to_camel(name: str) -> str:
    """'cantidad_requerida' -> 'cantidadRequerida'."""
    head, *rest = name.split('_')
    return head + ''.join(part[:1].upper() + part[1:] for part in rest)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parsea un timestamp ISO-8601 (acepta sufijo 'Z'). None si no es válido."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value)
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    text = value.isoformat()
    if text.endswith('+00:00'):
        text = text[:-6] + 'Z'
    return text


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_enum(enum_cls, value):
    # Valores desconocidos se conservan tal cual (datos legacy)
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return value


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, WireEntity):
        return value.to_dict()
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    return value


class WireEntity:
    """
    Mezcla común de serialización para todas las entidades.

    Subclases pueden declarar:
        _WIRE_OVERRIDES: nombres de intercambio que no siguen camelCase simple
        _ENUMS: atributo -> clase Enum
        _NESTED: atributo -> clase de entidad para listas anidadas
    """
    _WIRE_OVERRIDES: ClassVar[Dict[str, str]] = {}
    _ENUMS: ClassVar[Dict[str, Any]] = {}
    _NESTED: ClassVar[Dict[str, Any]] = {}

    @classmethod
    def wire_name(cls, attr: str) -> str:
        return cls._WIRE_OVERRIDES.get(attr, to_camel(attr))

    @classmethod
    def attr_name(cls, wire: str) -> Optional[str]:
        """Nombre de atributo para un campo de intercambio, o None si no existe."""
        for f in fields(cls):
            if cls.wire_name(f.name) == wire:
                return f.name
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convierte a diccionario para el backend. Omite valores None."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            result[self.wire_name(f.name)] = _serialize(value)
        return result

    def to_patch(self, *attrs: str) -> Dict[str, Any]:
        """Actualización parcial: sólo los atributos indicados (None incluido)."""
        return {self.wire_name(a): _serialize(getattr(self, a)) for a in attrs}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Crea instancia desde diccionario. Ignora campos desconocidos."""
        kwargs = {}
        for f in fields(cls):
            wire = cls.wire_name(f.name)
            if wire not in data:
                continue
            value = data[wire]
            if f.name in TIMESTAMP_FIELDS:
                value = parse_timestamp(value)
            elif f.name in cls._ENUMS:
                value = _coerce_enum(cls._ENUMS[f.name], value)
            elif f.name in cls._NESTED and isinstance(value, list):
                nested = cls._NESTED[f.name]
                value = [v if isinstance(v, nested) else nested.from_dict(v) for v in value]
            kwargs[f.name] = value
        return cls(**kwargs)


# ==============================================================================
# USUARIOS
# ==============================================================================

# Campos que el usuario puede editar sin aprobación del admin
SELF_EDITABLE_USER_FIELDS = frozenset([
    'phone1', 'phone2',
    'contactPerson1Name', 'contactPerson1Position',
    'contactPerson2Name', 'contactPerson2Position',
    'address', 'city', 'department',
])

# Campos que requieren aprobación del admin (van a pendingChanges)
ADMIN_GATED_USER_FIELDS = frozenset(['name', 'idNumber', 'email', 'certifiesREP'])


@dataclass
class User(WireEntity):
    """
    Usuario de la plataforma (comprador, proveedor o administrador).

    Attributes:
        password: Hash werkzeug. Nunca se envía a una contraparte.
        pending_changes: Cambios de identidad esperando aprobación del admin
    """
    _WIRE_OVERRIDES: ClassVar[Dict[str, str]] = {'certifies_rep': 'certifiesREP'}
    _ENUMS: ClassVar[Dict[str, Any]] = {'role': UserRole, 'status': UserStatus}

    id: str = ''
    name: str = ''
    email: str = ''
    password: Optional[str] = None
    role: Union[UserRole, str] = UserRole.BUYER
    status: Union[UserStatus, str] = UserStatus.PENDING_VERIFICATION
    is_verified: bool = False
    needs_admin_approval: bool = True
    registered_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    admin_notes: Optional[str] = None
    id_type: Optional[str] = None
    id_number: Optional[str] = None
    phone1: Optional[str] = None
    phone2: Optional[str] = None
    contact_person1_name: Optional[str] = None
    contact_person1_position: Optional[str] = None
    contact_person2_name: Optional[str] = None
    contact_person2_position: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    department: Optional[str] = None
    buyer_type: Optional[str] = None
    certifies_rep: Optional[bool] = None
    pending_changes: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_deleted(self) -> bool:
        return self.status == UserStatus.DELETED

    def public_dict(self) -> Dict[str, Any]:
        """Diccionario sin password."""
        data = self.to_dict()
        data.pop('password', None)
        return data


# ==============================================================================
# HISTORIAL DE NEGOCIACIÓN Y COMPROMISOS
# ==============================================================================

@dataclass
class CommunicationLog(WireEntity):
    """Entrada inmutable del historial de una oferta."""
    _ENUMS: ClassVar[Dict[str, Any]] = {'author': LogAuthor, 'event_type': LogEventType}

    id: str = ''
    author: Union[LogAuthor, str] = LogAuthor.ADMIN
    author_id: str = ''
    message: str = ''
    timestamp: Optional[datetime] = None
    event_type: Union[LogEventType, str] = LogEventType.ADMIN_FEEDBACK


@dataclass
class Commitment(WireEntity):
    """
    Volumen comprometido al aceptar una respuesta.

    En Marketplace, requirement_id guarda el id de la publicación.
    """
    id: str = ''
    offer_id: str = ''
    requirement_id: str = ''
    volume: float = 0.0


# ==============================================================================
# PROPUESTAS - Requerimiento (M1) y Publicación (M2)
# ==============================================================================

@dataclass
class Requirement(WireEntity):
    """Requerimiento de compra planificada publicado por un comprador."""
    _ENUMS: ClassVar[Dict[str, Any]] = {'status': RequirementStatus}

    id: str = ''
    buyer_id: str = ''
    status: Union[RequirementStatus, str] = RequirementStatus.PENDING_ADMIN
    created_at: Optional[datetime] = None
    category_id: Optional[str] = None
    total_volume: float = 0.0
    title: str = ''
    description: str = ''
    categoria_material: str = ''
    subcategoria: str = ''
    presentacion_material: str = ''
    cantidad_requerida: float = 0.0
    unidad: str = 'Toneladas (Ton)'
    frecuencia: str = 'Única Vez'
    especificaciones_calidad: str = ''
    ficha_tecnica_calidad: Optional[Dict[str, Any]] = None
    url_ficha_tecnica_calidad: Optional[str] = None
    especificaciones_logisticas: str = ''
    ficha_tecnica_logistica: Optional[Dict[str, Any]] = None
    url_ficha_tecnica_logistica: Optional[str] = None
    terminos_calculo_fletes: Optional[str] = None
    adjunto_terminos_fletes: Optional[Dict[str, Any]] = None
    departamento_recepcion: str = ''
    ciudad_recepcion: str = ''
    moneda: str = 'COP'
    condiciones_precio: str = ''
    tipo_pago: str = ''
    metodo_pago: str = ''
    porcentaje_anticipo: Optional[float] = None
    vigencia_inicio: str = ''
    vigencia_fin: str = ''
    rejection_reason: Optional[str] = None
    pending_quantity_increase: Optional[float] = None
    triggering_offer_id_for_increase: Optional[str] = None
    created_by_admin: Optional[bool] = None
    pending_edits: Optional[Dict[str, Any]] = None
    management_fee_per_kg: Optional[float] = None
    management_fee_accepted: bool = False
    fee_schedule_version: Optional[int] = None

    @property
    def owner_id(self) -> str:
        return self.buyer_id

    @property
    def quantity(self) -> float:
        return self.total_volume

    @property
    def unit(self) -> str:
        return self.unidad


@dataclass
class MarketplaceListing(WireEntity):
    """Publicación de material en stock de un proveedor."""
    _ENUMS: ClassVar[Dict[str, Any]] = {'status': ListingStatus}

    id: str = ''
    seller_id: str = ''
    status: Union[ListingStatus, str] = ListingStatus.PENDING_ADMIN
    created_at: Optional[datetime] = None
    title: str = ''
    category: str = ''
    subcategory: str = ''
    presentation: str = ''
    description: str = ''
    quantity: float = 0.0
    unit: str = 'Kilogramos (Kg)'
    price_per_unit: float = 0.0
    price_structure: Optional[str] = None
    currency: str = 'COP'
    valid_from: str = ''
    valid_until: str = ''
    frequency: str = 'Única Vez'
    requires_certificate: bool = False
    quality_description: str = ''
    quality_file: Optional[Dict[str, Any]] = None
    quality_url: Optional[str] = None
    logistics_description: str = ''
    logistics_file: Optional[Dict[str, Any]] = None
    logistics_url: Optional[str] = None
    logistic_notes: str = ''
    location_city: str = ''
    location_department: str = ''
    photos: List[Dict[str, Any]] = field(default_factory=list)
    rejection_reason: Optional[str] = None
    created_by_admin: Optional[bool] = None
    pending_edits: Optional[Dict[str, Any]] = None
    management_fee_per_kg: Optional[float] = None
    management_fee_accepted: bool = False
    fee_schedule_version: Optional[int] = None
    # None = publicación legacy sin registro de descuentos
    applied_commitment_ids: Optional[List[str]] = None

    @property
    def owner_id(self) -> str:
        return self.seller_id


# ==============================================================================
# RESPUESTAS - Oferta (M1) y Oferta de compra (M2)
# ==============================================================================

@dataclass
class Offer(WireEntity):
    """Oferta de un proveedor contra un Requerimiento."""
    _ENUMS: ClassVar[Dict[str, Any]] = {'status': OfferStatus}
    _NESTED: ClassVar[Dict[str, Any]] = {'communication_log': CommunicationLog}

    id: str = ''
    seller_id: str = ''
    requirement_id: str = ''
    status: Union[OfferStatus, str] = OfferStatus.PENDING_ADMIN
    created_at: Optional[datetime] = None
    cantidad_ofertada: float = 0.0
    unidad_medida: str = ''
    frecuencia_suministro: str = ''
    tipo_vehiculo: str = ''
    acepta_especificaciones_calidad: bool = True
    contrapropuesta_calidad: Optional[str] = None
    acepta_condiciones_logisticas: bool = True
    contrapropuesta_logistica: Optional[str] = None
    acepta_lugar_entrega: bool = True
    acepta_formula_precio: bool = True
    contrapropuesta_formula_precio: Optional[str] = None
    acepta_condiciones_pago: bool = True
    contrapropuesta_condiciones_pago: Optional[str] = None
    acepta_metodo_pago: bool = True
    contrapropuesta_metodo_pago: Optional[str] = None
    fecha_inicio_vigencia: str = ''
    fecha_fin_vigencia: str = ''
    fotos_material: List[Dict[str, Any]] = field(default_factory=list)
    fotos_proceso: List[Dict[str, Any]] = field(default_factory=list)
    fotos_instalaciones: List[Dict[str, Any]] = field(default_factory=list)
    communication_log: List[CommunicationLog] = field(default_factory=list)
    created_by_admin: Optional[bool] = None
    pending_edits: Optional[Dict[str, Any]] = None
    penalty_fee_accepted: bool = False
    penalty_fee_per_kg: Optional[float] = None
    rejection_reason: Optional[str] = None

    @property
    def author_id(self) -> str:
        return self.seller_id

    @property
    def proposal_id(self) -> str:
        return self.requirement_id

    @property
    def volume(self) -> float:
        return self.cantidad_ofertada


@dataclass
class PurchaseOffer(WireEntity):
    """Oferta de compra de un comprador contra una Publicación."""
    _ENUMS: ClassVar[Dict[str, Any]] = {'status': PurchaseOfferStatus}

    id: str = ''
    listing_id: str = ''
    buyer_id: str = ''
    status: Union[PurchaseOfferStatus, str] = PurchaseOfferStatus.PENDING_ADMIN
    created_at: Optional[datetime] = None
    quantity_requested: float = 0.0
    total_price_offered: float = 0.0
    tipo_vehiculo: str = ''
    frecuencia_retiro: str = ''
    fecha_recogida: Optional[str] = None
    acepta_ubicacion: bool = True
    contrapropuesta_logistica: Optional[str] = None
    acepta_precio: bool = True
    contrapropuesta_precio: Optional[float] = None
    offer_price_structure: Optional[str] = None
    price_explanation: Optional[str] = None
    acepta_calidad: bool = True
    contrapropuesta_calidad: Optional[str] = None
    metodo_pago_propuesto: str = ''
    condiciones_pago_propuestas: str = ''
    valid_from: str = ''
    valid_until: str = ''
    message: Optional[str] = None
    can_provide_certificate: bool = False
    rejection_reason: Optional[str] = None
    created_by_admin: Optional[bool] = None
    penalty_fee_accepted: bool = False
    penalty_fee_per_kg: Optional[float] = None

    @property
    def author_id(self) -> str:
        return self.buyer_id

    @property
    def proposal_id(self) -> str:
        return self.listing_id

    @property
    def volume(self) -> float:
        return self.quantity_requested
