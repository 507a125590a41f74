# ecoreco/api/deps.py
from fastapi import Request
from ecoreco.domain.services.pipeline_svc import RecommendationService

# Dependency for the orchestrator built at startup (see core.lifespan)
def reco_service(request: Request) -> RecommendationService:
    return request.app.state.reco_service
