# ==============================================================================
# VISIBILIDAD - Anonimización de contrapartes
# ==============================================================================
# La plataforma intermedia: compradores y proveedores no ven la identidad ni
# el contacto del otro. Sólo el admin y el propio usuario ven los datos reales.
#
# PublicView.to_dict() es la ÚNICA forma de exponer un usuario a otro.
# ==============================================================================

from dataclasses import dataclass
from typing import Any, Dict, Optional

from yubarta.models import User, UserRole

UNKNOWN_USER = 'Usuario Desconocido'
PROTECTED_SUBTEXT = 'Identidad protegida por la plataforma'
VERIFIED_BADGE = 'Verificado'

BUYER_LABEL = 'Comprador'
# Cualquier otro rol se presenta como proveedor
SELLER_LABEL = 'Proveedor'


@dataclass(frozen=True)
class PublicView:
    """Representación de un usuario ante otro."""
    name: str
    subtext: str = ''
    contact_hidden: bool = True
    contact: Optional[Dict[str, Any]] = None
    user: Optional[User] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'name': self.name,
            'subtext': self.subtext,
            'contactHidden': self.contact_hidden,
        }
        if self.contact is not None:
            data['contact'] = dict(self.contact)
        if self.user is not None:
            data['fullUser'] = self.user.public_dict()
        return data


def _contact(user: User) -> Dict[str, Any]:
    return {
        'email': user.email,
        'phone1': user.phone1,
        'phone2': user.phone2,
        'address': user.address,
        'contactPerson1Name': user.contact_person1_name,
    }


def public_view(target: Optional[User], viewer: Optional[User]) -> PublicView:
    """
    Cómo ve 'viewer' al usuario 'target'.

    Admin o el mismo usuario: nombre real, ciudad, sello de verificación y
    contacto. Cualquier otro: rol y ciudad, sin contacto ni referencia al
    usuario.
    """
    if target is None:
        return PublicView(name=UNKNOWN_USER, subtext='', contact_hidden=True)

    city = target.city or ''
    is_privileged = viewer is not None and (viewer.is_admin or viewer.id == target.id)

    if is_privileged:
        subtext = ' • '.join(part for part in (city, VERIFIED_BADGE if target.is_verified else '') if part)
        return PublicView(
            name=target.name,
            subtext=subtext,
            contact_hidden=False,
            contact=_contact(target),
            user=target,
        )

    label = BUYER_LABEL if target.role == UserRole.BUYER else SELLER_LABEL
    name = f'{label} ({city})' if city else label
    return PublicView(name=name, subtext=PROTECTED_SUBTEXT, contact_hidden=True)
