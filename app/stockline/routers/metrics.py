from fastapi import APIRouter, Response

from app.stockline.core.metrics import metrics

router = APIRouter()


@router.get("/stockline/ops/metrics", summary="Prometheus exposition of workflow and HTTP metrics")
def get_metrics():
    snapshot = metrics.render()
    return Response(content=snapshot.content, media_type=snapshot.content_type)
