from fastapi import APIRouter

from ..settings import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
	return {
		"success": True,
		"data": {
			"status": "ok",
			"markingBackend": settings.marking_backend,
			"geminiConfigured": bool(settings.gemini_api_key),
			"extractionTiers": settings.extraction_tier_list,
		},
	}
