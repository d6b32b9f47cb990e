from datetime import datetime
from typing import Annotated, Any, Literal, Union
from pydantic import BaseModel, Field, TypeAdapter, field_validator


class _FieldBase(BaseModel):
    keyname: str = Field(..., min_length=1)
    name: str | None = None
    description: str | None = None
    optional: bool = False
    default: Any = None


class StringField(_FieldBase):
    field_type: Literal["string"]
    placeholder: str | None = None


class TextField(_FieldBase):
    field_type: Literal["text"]


class NumberField(_FieldBase):
    field_type: Literal["number"]
    min: float | None = None
    max: float | None = None


class BooleanField(_FieldBase):
    field_type: Literal["boolean"]


class SelectField(_FieldBase):
    field_type: Literal["select"]
    options: list[str | dict[str, str]] = Field(default_factory=list)
    multiple: bool = False


class TimeZoneField(_FieldBase):
    field_type: Literal["time_zone"]


class MultiStringField(_FieldBase):
    field_type: Literal["multi_string"]


class AuthorBioField(_FieldBase):
    field_type: Literal["author_bio"]
    optional: bool = True


class CopyableField(_FieldBase):
    field_type: Literal["copyable"]
    optional: bool = True
    value: str | None = None


ConfigurationField = Annotated[
    Union[
        StringField,
        TextField,
        NumberField,
        BooleanField,
        SelectField,
        TimeZoneField,
        MultiStringField,
        AuthorBioField,
        CopyableField,
    ],
    Field(discriminator="field_type"),
]

INFORMATIONAL_FIELD_TYPES = {"author_bio", "copyable"}

configuration_template_adapter = TypeAdapter(list[ConfigurationField])


def parse_configuration_template(raw: Any) -> list[ConfigurationField]:
    """Validate a stored/incoming template; accepts a list or {"custom_fields": [...]}."""
    if raw is None:
        return []
    if isinstance(raw, dict):
        raw = raw.get("custom_fields", [])
    return configuration_template_adapter.validate_python(raw)


def missing_required_fields(template: Any, configuration: dict[str, Any] | None) -> list[str]:
    configuration = configuration or {}
    missing: list[str] = []
    for field in parse_configuration_template(template):
        if field.field_type in INFORMATIONAL_FIELD_TYPES or field.optional:
            continue
        value = configuration.get(field.keyname)
        if value in (None, "", []) and field.default in (None, "", []):
            missing.append(field.keyname)
    return missing


class PluginOut(BaseModel):
    id: int
    uuid: str
    name: str
    plugin_type: str
    data_strategy: str
    data_stale_minutes: int | None = None
    polling_url: str | None = None
    polling_verb: str
    polling_header: str | None = None
    polling_body: str | None = None
    data_payload: Any = None
    data_payload_updated_at: datetime | None = None
    render_markup: str | None = None
    markup_language: str
    configuration: dict[str, Any] | None = None
    configuration_template: Any = None
    dark_mode: bool | None = None
    no_bleed: bool | None = None
    current_image: str | None = None

    class Config:
        from_attributes = True


class PluginIn(BaseModel):
    name: str = Field(..., min_length=1)
    plugin_type: Literal["recipe", "image_webhook"] = "recipe"
    data_strategy: Literal["static", "push", "pull"] = "static"
    data_stale_minutes: int | None = Field(default=None, ge=1)
    polling_url: str | None = None
    polling_verb: Literal["get", "post"] = "get"
    polling_header: str | None = None
    polling_body: str | None = None
    render_markup: str | None = None
    markup_language: Literal["liquid", "jinja"] = "liquid"
    configuration: dict[str, Any] | None = None
    configuration_template: list[ConfigurationField] | None = None
    data_payload: Any = None
    dark_mode: bool = False
    no_bleed: bool = False


class PluginPatch(BaseModel):
    name: str | None = None
    plugin_type: Literal["recipe", "image_webhook"] | None = None
    data_strategy: Literal["static", "push", "pull"] | None = None
    data_stale_minutes: int | None = Field(default=None, ge=1)
    polling_url: str | None = None
    polling_verb: Literal["get", "post"] | None = None
    polling_header: str | None = None
    polling_body: str | None = None
    render_markup: str | None = None
    markup_language: Literal["liquid", "jinja"] | None = None
    configuration: dict[str, Any] | None = None
    configuration_template: list[ConfigurationField] | None = None
    dark_mode: bool | None = None
    no_bleed: bool | None = None
    data_payload: Any = None

    @field_validator(
        "name", "plugin_type", "data_strategy", "polling_verb", "markup_language", "dark_mode", "no_bleed"
    )
    @classmethod
    def reject_null(cls, v):
        """Omit a field to leave it unchanged; these columns cannot be cleared."""
        if v is None:
            raise ValueError("may not be null")
        return v


class WebhookIn(BaseModel):
    merge_variables: dict[str, Any] = Field(default_factory=dict)
