class GenerationError(Exception):
	"""A generation attempt produced nothing usable."""


class MalformedResponse(GenerationError):
	"""Model output could not be parsed as JSON, even after recovery."""


class InvalidShape(GenerationError):
	"""Model output parsed but is not an item array, {"quiz": [...]} or {"questions": [...]}."""


class NoValidQuestions(GenerationError):
	pass


class ValidationError(ValueError):
	pass


class NotFoundError(LookupError):
	pass


class PersistenceError(RuntimeError):
	pass
