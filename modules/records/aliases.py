"""
Field aliases for member records.

Member documents have been written by several client versions with
Spanish and camelCase field names. Reads resolve them onto the canonical
names below; writes always use the canonical names.
"""

from shared.fields import AliasTable

MEMBER_ALIASES: AliasTable = {
    "name": ("nombre",),
    "email": ("correo",),
    "age": ("edad",),
    "specialty": ("especialidad",),
    "created_at": ("createdAt", "creado"),
    "updated_at": ("updatedAt",),
}
