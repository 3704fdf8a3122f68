"""FastAPI routes for the identity session."""

from fastapi import APIRouter, HTTPException, Request

from controllers.session_controller import describe_session, rebootstrap

router = APIRouter(prefix="/session")


@router.get("")
async def get_session_route(request: Request):
	return describe_session(request)


@router.post("/bootstrap")
async def bootstrap_session_route(request: Request):
	try:
		return await rebootstrap(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
