from typing import Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ..db import get_db, get_session_factory
from ..gemini_client import GeneratorFactory, get_generator_factory
from ..models import GenerationRun
from ..personalized import get_run, process_generation_page, regenerate_quiz_set, run_personalized_generation, start_generation
from ..schemas import CamelModel
from .auth import User, get_current_admin
from .common import to_http_exception
from .quiz_sets import quiz_set_to_dict

router = APIRouter(prefix="/gemini", tags=["gemini"])


class GenerateRequest(CamelModel):
	user_id: str


class BatchRequest(CamelModel):
	user_id: str
	batch_index: int = 0
	page_size: Optional[int] = None


class RegenerateRequest(CamelModel):
	quiz_set_id: str


def run_to_dict(run: GenerationRun) -> dict:
	return {
		"userId": run.user_id,
		"status": run.status,
		"progress": run.progress,
		"total": run.total,
		"currentBatch": run.current_batch,
		"interests": list(run.interests or []),
		"error": run.error,
		"createdAt": run.created_at,
		"updatedAt": run.updated_at,
		"completedAt": run.completed_at,
	}


@router.post("", status_code=202)
async def generate(
	req: GenerateRequest,
	background_tasks: BackgroundTasks,
	user: User = Depends(get_current_admin),
	db: Session = Depends(get_db),
	session_factory: Callable[[], Session] = Depends(get_session_factory),
	generator_factory: GeneratorFactory = Depends(get_generator_factory),
):
	try:
		run = start_generation(db, req.user_id)
	except Exception as e:
		raise to_http_exception(e)
	# The request session is closed before background tasks run
	background_tasks.add_task(run_personalized_generation, session_factory, generator_factory, req.user_id)
	return {"success": True, "run": run_to_dict(run)}


@router.get("")
async def generation_status(user_id: str, user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
	try:
		return run_to_dict(get_run(db, user_id))
	except Exception as e:
		raise to_http_exception(e)


@router.post("/batch")
async def generate_page(
	req: BatchRequest,
	user: User = Depends(get_current_admin),
	db: Session = Depends(get_db),
	generator_factory: GeneratorFactory = Depends(get_generator_factory),
):
	generator = None
	try:
		generator = generator_factory()
		result = await process_generation_page(db, generator, req.user_id, req.batch_index, req.page_size)
	except Exception as e:
		raise to_http_exception(e)
	finally:
		if generator is not None:
			await generator.aclose()
	return {
		"success": True,
		"batchIndex": result.batch_index,
		"saved": result.saved,
		"failed": result.failed,
		"progress": result.progress,
		"total": result.total,
		"done": result.done,
		"nextBatchIndex": result.next_batch_index,
	}


@router.post("/regenerate")
async def regenerate(
	req: RegenerateRequest,
	user: User = Depends(get_current_admin),
	db: Session = Depends(get_db),
	generator_factory: GeneratorFactory = Depends(get_generator_factory),
):
	generator = None
	try:
		generator = generator_factory()
		quiz_set = await regenerate_quiz_set(db, generator, req.quiz_set_id)
	except Exception as e:
		raise to_http_exception(e)
	finally:
		if generator is not None:
			await generator.aclose()
	return {"success": True, "quizSet": quiz_set_to_dict(quiz_set)}
