"""
Entity registrations - the typed declaration of one admin-managed data type.

Registrations are validated once, when the host registers them, and are
immutable afterwards. The field schema is handed verbatim to whatever
persistence and rendering layer the host uses.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..auth.rbac_contract import (
    ALL_CRUD_ACTIONS,
    CRUD_ACTION_ORDER,
    CrudAction,
    validate_capability_part,
)
from ..errors import EntityConfigurationError, InvalidPermissionError


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    BOOLEAN = "boolean"
    EMAIL = "email"
    PASSWORD = "password"
    DATE = "date"
    DATETIME = "datetime"
    CHOICE = "choice"
    ASSOCIATION = "association"
    COLLECTION = "collection"
    FILE = "file"
    IMAGE = "image"


UPLOAD_FIELD_TYPES = frozenset({FieldType.FILE, FieldType.IMAGE})
RELATION_FIELD_TYPES = frozenset({FieldType.ASSOCIATION, FieldType.COLLECTION})
MULTI_VALUE_FIELD_TYPES = UPLOAD_FIELD_TYPES | RELATION_FIELD_TYPES | {FieldType.CHOICE}


class FieldSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: FieldType = FieldType.TEXT
    label: str | None = None
    required: bool = False
    readonly: bool = False
    help: str | None = None
    upload_dir: str | None = None
    target_entity: str | None = None
    multiple: bool = False
    choices: dict[str, str] | None = None

    @model_validator(mode="after")
    def _check_type_specific_options(self) -> "FieldSpec":
        if self.upload_dir is not None and self.type not in UPLOAD_FIELD_TYPES:
            raise ValueError(f"upload_dir is only valid for file/image fields, not '{self.type.value}'")
        if self.type in RELATION_FIELD_TYPES and not self.target_entity:
            raise ValueError(f"{self.type.value} fields require target_entity")
        if self.target_entity is not None and self.type not in RELATION_FIELD_TYPES:
            raise ValueError("target_entity is only valid for association/collection fields")
        if self.type is FieldType.CHOICE and not self.choices:
            raise ValueError("choice fields require a non-empty choices mapping")
        if self.choices is not None and self.type is not FieldType.CHOICE:
            raise ValueError("choices is only valid for choice fields")
        if self.multiple and self.type not in MULTI_VALUE_FIELD_TYPES:
            raise ValueError(f"multiple is not supported for '{self.type.value}' fields")
        return self


_SEGMENT_SPLIT = re.compile(r"[.\\:]")
_RESOURCE_PATTERN = re.compile(r"^[a-z0-9_][a-z0-9_\-]*\Z")


def resource_identifier_for(entity_type: str) -> str:
    """Lower-cased final segment of a fully qualified type name.

    ``"shop.models.Product"`` -> ``"product"``; PHP-style ``App\\Entity\\User``
    and ``module:Class`` names are accepted too.
    """
    resource = _SEGMENT_SPLIT.split(entity_type.strip())[-1].lower()
    if not resource:
        raise EntityConfigurationError(f"Cannot derive a resource identifier from '{entity_type}'")
    return resource


def qualified_name(entity_type: type | str) -> str:
    if isinstance(entity_type, str):
        return entity_type
    return f"{entity_type.__module__}.{entity_type.__qualname__}"


class EntityRegistration(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    entity_type: str = Field(..., min_length=1)
    title: str | None = None
    fields: dict[str, FieldSpec] = Field(default_factory=dict)
    actions: tuple[CrudAction, ...] = CRUD_ACTION_ORDER
    filters: tuple[str, ...] = ()
    # action -> role names granted that action when permissions are synced
    permissions: dict[CrudAction, tuple[str, ...]] = Field(default_factory=dict)
    pagination: int | None = Field(default=None, gt=0)
    searchable: bool = True
    sortable: bool = True

    @field_validator("actions")
    @classmethod
    def _dedupe_actions(cls, value: tuple[CrudAction, ...]) -> tuple[CrudAction, ...]:
        if not value:
            raise ValueError("an entity must enable at least one action")
        enabled = set(value)
        # stored in canonical order regardless of declaration order
        return tuple(action for action in CRUD_ACTION_ORDER if action in enabled)

    @model_validator(mode="after")
    def _check_references(self) -> "EntityRegistration":
        resource = resource_identifier_for(self.entity_type)
        try:
            validate_capability_part("resource", resource)
        except InvalidPermissionError as exc:
            raise ValueError(str(exc)) from exc
        if not _RESOURCE_PATTERN.match(resource):
            raise ValueError(f"resource identifier '{resource}' must match [a-z0-9_-]")

        if self.fields:
            unknown_filters = [name for name in self.filters if name not in self.fields]
            if unknown_filters:
                raise ValueError(f"filters reference undeclared fields: {unknown_filters}")

        disabled = [action.value for action in self.permissions if action not in self.actions]
        if disabled:
            raise ValueError(f"permissions declared for disabled actions: {disabled}")
        return self

    @property
    def resource(self) -> str:
        return resource_identifier_for(self.entity_type)

    @property
    def display_title(self) -> str:
        return self.title or self.resource.replace("_", " ").title()

    def enables(self, action: CrudAction | str) -> bool:
        return CrudAction(action) in self.actions

    def page_size(self, default: int) -> int:
        return self.pagination or default


def build_entity_registration(entity_type: type | str, **config: Any) -> EntityRegistration:
    """Validate a registration, turning pydantic errors into configuration errors.

    Raises:
        EntityConfigurationError: If any field, action or reference is invalid.
    """
    actions = config.get("actions")
    if actions is not None:
        unknown = [action for action in actions if str(getattr(action, "value", action)) not in ALL_CRUD_ACTIONS]
        if unknown:
            raise EntityConfigurationError(
                f"Unknown actions {unknown} for '{qualified_name(entity_type)}'. "
                f"Allowed: {sorted(ALL_CRUD_ACTIONS)}"
            )
    try:
        return EntityRegistration(entity_type=qualified_name(entity_type), **config)
    except ValidationError as exc:
        raise EntityConfigurationError(
            f"Invalid registration for '{qualified_name(entity_type)}': {exc}"
        ) from exc
