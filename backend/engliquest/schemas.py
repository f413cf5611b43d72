from __future__ import annotations
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Question(BaseModel):
	"""One multiple-choice item as produced by generation.

	``clue`` is shown before answering, ``explanation`` after.
	"""

	model_config = ConfigDict(populate_by_name=True)

	passage: Optional[str] = None
	question: str
	options: List[str] = Field(min_length=4, max_length=4)
	correct_index: int = Field(alias="correctIndex", ge=0, le=3)
	explanation: str
	clue: str

	def to_document(self) -> Dict[str, Any]:
		return self.model_dump(by_alias=True, exclude_none=True)


class CamelModel(BaseModel):
	"""Request body accepting camelCase keys, as the admin UI sends them."""

	model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)
