"""
Collation model shared by collection and index declarations.
"""
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class CollationCaseFirst(str, Enum):
    """Sort order of case differences."""
    UPPER = "upper"
    LOWER = "lower"
    OFF = "off"


class CollationAlternate(str, Enum):
    """Whether whitespace and punctuation are considered base characters."""
    NON_IGNORABLE = "non-ignorable"
    SHIFTED = "shifted"


class CollationMaxVariable(str, Enum):
    """Characters affected by alternate=shifted."""
    PUNCT = "punct"
    SPACE = "space"


class Collation(BaseModel):
    """
    Locale comparison rules, passed verbatim to the store.
    """
    model_config = ConfigDict(populate_by_name=True, extra="forbid", use_enum_values=True)

    locale: str = Field(..., min_length=1, description="ICU locale, or 'simple'")
    strength: Optional[int] = Field(None, ge=1, le=5, description="ICU comparison level")
    case_level: Optional[bool] = Field(None, alias="caseLevel")
    case_first: Optional[CollationCaseFirst] = Field(None, alias="caseFirst")
    numeric_ordering: Optional[bool] = Field(None, alias="numericOrdering")
    alternate: Optional[CollationAlternate] = None
    max_variable: Optional[CollationMaxVariable] = Field(None, alias="maxVariable")
    normalization: Optional[bool] = None
    backwards: Optional[bool] = None

    def to_document(self) -> dict[str, Any]:
        """Collation document with only the fields that were declared."""
        return self.model_dump(by_alias=True, exclude_none=True)
