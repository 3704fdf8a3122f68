from fastapi import APIRouter, File, HTTPException, Request, UploadFile

from controllers.analysis_controller import get_image, list_history, submit_analysis

router = APIRouter(prefix="/analyses")


@router.post("")
async def post_analysis(request: Request, file: UploadFile = File(...)):
    """Analyze an uploaded image and save the result to the history."""
    try:
        return await submit_analysis(request, file)
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc))


@router.get("")
async def get_history(request: Request, include_images: bool = False):
    """Return the analysis history, newest first."""
    return await list_history(request, include_images)


@router.get("/{analysis_id}/image")
async def get_analysis_image(request: Request, analysis_id: str, thumbnail: bool = False):
    """Return the stored image bytes (or PNG thumbnail) for an analysis."""
    try:
        return await get_image(request, analysis_id, thumbnail)
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc))
