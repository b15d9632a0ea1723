"""
Collection declaration models.

A CollectionDeclaration is what the watch source hands over: resource
identity plus the raw spec. The spec is validated into a CollectionSpec
at the start of each reconcile pass.
"""
from enum import Enum
from typing import Any, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from mongo_collections.core.exceptions import DeclarationError
from mongo_collections.models.collation import Collation
from mongo_collections.models.index import IndexDeclaration


class ResourceIdentity(NamedTuple):
    """Namespace and name of a declared resource."""
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


class TimeSeriesGranularity(str, Enum):
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"


class ValidationAction(str, Enum):
    ERROR = "error"
    WARN = "warn"


class ValidationLevel(str, Enum):
    OFF = "off"
    MODERATE = "moderate"
    STRICT = "strict"


class TimeSeries(BaseModel):
    """Time series collection options."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid", use_enum_values=True)

    time_field: str = Field(..., alias="timeField", min_length=1)
    meta_field: Optional[str] = Field(None, alias="metaField")
    granularity: Optional[TimeSeriesGranularity] = None
    bucket_max_span_seconds: Optional[int] = Field(None, alias="bucketMaxSpanSeconds", gt=0)
    bucket_rounding_seconds: Optional[int] = Field(None, alias="bucketRoundingSeconds", gt=0)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CollectionSpec(BaseModel):
    """
    Desired state of one collection.

    Everything except ``indexes`` is only used when the collection is
    created.
    """
    model_config = ConfigDict(populate_by_name=True, extra="forbid", use_enum_values=True)

    name: Optional[str] = Field(None, min_length=1, description="Collection name, defaults to the resource name")
    clustered: bool = False
    collation: Optional[Collation] = None
    indexes: list[IndexDeclaration] = Field(default_factory=list)

    capped: bool = False
    size: Optional[int] = Field(None, gt=0)
    max: Optional[int] = Field(None, gt=0)
    expire_after_seconds: Optional[int] = Field(None, alias="expireAfterSeconds", ge=0)
    time_series: Optional[TimeSeries] = Field(None, alias="timeSeries")
    validator: Optional[dict[str, Any]] = None
    validation_action: Optional[ValidationAction] = Field(None, alias="validationAction")
    validation_level: Optional[ValidationLevel] = Field(None, alias="validationLevel")
    change_stream_pre_and_post_images: Optional[bool] = Field(
        None, alias="changeStreamPreAndPostImages"
    )

    @field_validator("indexes", mode="before")
    @classmethod
    def _no_indexes(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("clustered", "capped", mode="before")
    @classmethod
    def _unset_flag(cls, value: Any) -> Any:
        return False if value is None else value

    def creation_options(self) -> dict[str, Any]:
        """Options for the create command, collation as a plain document."""
        options: dict[str, Any] = {}
        if self.clustered:
            options["clusteredIndex"] = {"key": {"_id": 1}, "unique": True}
        if self.collation is not None:
            options["collation"] = self.collation.to_document()
        if self.capped:
            options["capped"] = True
            if self.size is not None:
                options["size"] = self.size
            if self.max is not None:
                options["max"] = self.max
        if self.expire_after_seconds is not None:
            options["expireAfterSeconds"] = self.expire_after_seconds
        if self.time_series is not None:
            options["timeseries"] = self.time_series.to_document()
        if self.validator is not None:
            options["validator"] = self.validator
        if self.validation_action is not None:
            options["validationAction"] = self.validation_action
        if self.validation_level is not None:
            options["validationLevel"] = self.validation_level
        if self.change_stream_pre_and_post_images is not None:
            options["changeStreamPreAndPostImages"] = {
                "enabled": self.change_stream_pre_and_post_images
            }
        return options


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "spec"
        problems.append(f"{location}: {item['msg']}")
    return "; ".join(problems)


class CollectionDeclaration(BaseModel):
    """
    A declared MongoCollection resource as read from the watch cache.
    """
    model_config = ConfigDict(frozen=True)

    namespace: str = ""
    name: str
    generation: Optional[int] = None
    resource_version: Optional[str] = None
    spec: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_resource(cls, obj: dict[str, Any]) -> "CollectionDeclaration":
        """Build from a custom object as returned by the Kubernetes API."""
        metadata = obj.get("metadata") or {}
        return cls(
            namespace=metadata.get("namespace") or "",
            name=metadata["name"],
            generation=metadata.get("generation"),
            resource_version=metadata.get("resourceVersion"),
            spec=obj.get("spec") or {},
        )

    @property
    def identity(self) -> ResourceIdentity:
        return ResourceIdentity(self.namespace, self.name)

    def collection_spec(self) -> CollectionSpec:
        """Validate the raw spec. Raises DeclarationError when malformed."""
        try:
            return CollectionSpec.model_validate(self.spec)
        except ValidationError as e:
            raise DeclarationError(
                f"invalid spec: {_describe_validation_error(e)}", e
            ) from e

    def collection_name(self, spec: CollectionSpec) -> str:
        return spec.name or self.name
