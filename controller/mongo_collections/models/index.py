"""
Index models: declared indexes and the live indexes reported by the store.
"""
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from mongo_collections.models.collation import Collation

# Name of the default identity index, also used for the clustered index.
DEFAULT_INDEX_NAME = "_id_"

KeyValue = Union[int, float, str]

# Declared option names that the store spells differently.
_STORE_OPTION_NAMES = {
    "defaultLanguage": "default_language",
    "languageOverride": "language_override",
    "sphereIndexVersion": "2dsphereIndexVersion",
}


class IndexType(str, Enum):
    """Special index key types."""
    HASHED = "hashed"
    TEXT = "text"
    GEO_2D = "2d"
    GEO_2DSPHERE = "2dsphere"


class IndexKey(BaseModel):
    """One entry of an index key pattern."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid", use_enum_values=True)

    field: str = Field(..., min_length=1, description="Document field path")
    direction: Optional[Literal[1, -1]] = Field(None, description="1 ascending, -1 descending")
    index_type: Optional[IndexType] = Field(None, alias="indexType")

    @model_validator(mode="after")
    def _single_kind(self) -> "IndexKey":
        if self.direction is not None and self.index_type is not None:
            raise ValueError(
                f"the key {self.field} has both the fields direction and indexType set"
            )
        return self

    @property
    def value(self) -> KeyValue:
        """Value of this key in the store's key pattern document."""
        if self.index_type is not None:
            return self.index_type
        return self.direction if self.direction is not None else 1


class IndexOptions(BaseModel):
    """
    Recognized index options. Anything else is rejected.
    """
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: Optional[str] = Field(None, min_length=1)
    unique: Optional[bool] = None
    sparse: Optional[bool] = None
    expire_after_seconds: Optional[int] = Field(None, alias="expireAfterSeconds", ge=0)
    partial_filter_expression: Optional[dict[str, Any]] = Field(
        None, alias="partialFilterExpression"
    )
    collation: Optional[Collation] = None
    hidden: Optional[bool] = None
    bits: Optional[int] = Field(None, ge=1, le=32)
    min: Optional[float] = None
    max: Optional[float] = None
    default_language: Optional[str] = Field(None, alias="defaultLanguage")
    language_override: Optional[str] = Field(None, alias="languageOverride")
    weights: Optional[dict[str, int]] = None
    text_index_version: Optional[int] = Field(None, alias="textIndexVersion")
    sphere_index_version: Optional[int] = Field(None, alias="sphereIndexVersion")
    wildcard_projection: Optional[dict[str, Literal[0, 1]]] = Field(
        None, alias="wildcardProjection"
    )

    def to_document(self) -> dict[str, Any]:
        """Options keyed the way the store names them."""
        doc = self.model_dump(by_alias=True, exclude_none=True)
        for alias, store_name in _STORE_OPTION_NAMES.items():
            if alias in doc:
                doc[store_name] = doc.pop(alias)
        return doc


class IndexDeclaration(BaseModel):
    """
    A declared index: an ordered key pattern plus options.

    Two declarations with the same keys but different options are
    different versions of the index.
    """
    model_config = ConfigDict(extra="forbid")

    keys: list[IndexKey] = Field(..., min_length=1)
    options: IndexOptions = Field(default_factory=IndexOptions)

    @field_validator("options", mode="before")
    @classmethod
    def _empty_options(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def name(self) -> Optional[str]:
        return self.options.name

    def key_pattern(self) -> list[tuple[str, KeyValue]]:
        return [(key.field, key.value) for key in self.keys]


class LiveIndexDescriptor(BaseModel):
    """An index that physically exists, as reported by the store."""

    name: str
    keys: list[tuple[str, KeyValue]]
    options: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_index_information(cls, name: str, info: dict[str, Any]) -> "LiveIndexDescriptor":
        """Build from one entry of ``Collection.index_information()``."""
        options = {k: v for k, v in info.items() if k not in ("key", "name")}
        return cls(
            name=name,
            keys=[(field, value) for field, value in info["key"]],
            options=options,
        )

    @property
    def is_default(self) -> bool:
        return self.name == DEFAULT_INDEX_NAME
