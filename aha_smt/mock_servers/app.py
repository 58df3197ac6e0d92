"""FastAPI mock of the Aha! REST API for local development and tests."""

import os
import random
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from pydantic import BaseModel


class FeatureUpdate(BaseModel):
    """Body of PUT /features/{id}."""
    feature: Dict


class VoteCreate(BaseModel):
    """Body of POST /features/{id}/votes."""
    vote: Dict


def _paginate(items: List[Dict], page: int, per_page: int) -> Dict:
    total_pages = max(1, -(-len(items) // per_page))
    start = (page - 1) * per_page
    return {
        "items": items[start:start + per_page],
        "pagination": {
            "total_records": len(items),
            "total_pages": total_pages,
            "current_page": page,
            "per_page": per_page,
        },
    }


def create_mock_app(
    name: str = "mock-aha",
    releases: int = 3,
    features_per_release: int = 25,
    random_seed: Optional[int] = None,
    error_rate: float = 0.0,
    rate_limit_status: int = 503,
) -> FastAPI:
    """
    Create a FastAPI mock upstream with configurable behavior.

    Args:
        name: Server name reported by /health
        releases: Number of releases to serve
        features_per_release: Features generated per release
        random_seed: Seed for deterministic behavior
        error_rate: Probability of answering with ``rate_limit_status``
        rate_limit_status: Status used for simulated failures (429, 503, ...)

    Returns:
        FastAPI application; ``app.state.request_count`` counts API calls
    """
    app = FastAPI(title=f"Mock Aha API - {name}")
    rng = random.Random(random_seed)

    app.state.request_count = 0
    app.state.vote_count = 0
    app.state.releases = {
        f"rel-{r}": {
            "id": f"rel-{r}",
            "reference_num": f"PRJ-R-{r}",
            "name": f"Sprint {r}",
            "start_date": "2026-01-05",
            "release_date": "2026-01-19",
            "status": "active",
            "progress": 0,
            "parking_lot": False,
        }
        for r in range(1, releases + 1)
    }
    app.state.features = {}
    for release_id in app.state.releases:
        for i in range(1, features_per_release + 1):
            feature_id = f"{release_id}-f{i}"
            app.state.features[feature_id] = {
                "id": feature_id,
                "reference_num": f"PRJ-{release_id}-{i}",
                "name": f"Feature {i}",
                "score": rng.choice([1, 2, 3, 5, 8, 13]),
                "work_units": 1,
                "original_estimate": None,
                "release": {"id": release_id},
                "votes": [],
            }

    @app.middleware("http")
    async def count_and_fail(request: Request, call_next):
        if request.url.path.startswith("/api/"):
            app.state.request_count += 1
            if rng.random() < error_rate:
                return Response(status_code=rate_limit_status, content="Simulated error")
        return await call_next(request)

    @app.get("/api/v1/me")
    async def me():
        return {"user": {"id": "u-1", "name": "Scrum Master", "email": "sm@example.com"}}

    @app.get("/api/v1/products")
    async def products(page: int = 1, per_page: int = 200):
        page_data = _paginate(
            [{"id": "p-1", "reference_prefix": "PRJ", "name": "Project"}], page, per_page
        )
        return {"products": page_data["items"], "pagination": page_data["pagination"]}

    @app.get("/api/v1/releases/{release_id}")
    async def get_release(release_id: str):
        release = app.state.releases.get(release_id)
        if release is None:
            raise HTTPException(status_code=404, detail="Release not found")
        return {"release": release}

    @app.get("/api/v1/releases/{release_id}/features")
    async def release_features(release_id: str, page: int = 1, per_page: int = 200):
        if release_id not in app.state.releases:
            raise HTTPException(status_code=404, detail="Release not found")
        if page < 1:
            raise HTTPException(status_code=400, detail="Invalid page number")
        features = [
            {k: v for k, v in f.items() if k != "votes"}
            for f in app.state.features.values()
            if f["release"]["id"] == release_id
        ]
        page_data = _paginate(features, page, per_page)
        return {"features": page_data["items"], "pagination": page_data["pagination"]}

    @app.get("/api/v1/features/{feature_id}")
    async def get_feature(feature_id: str):
        feature = app.state.features.get(feature_id)
        if feature is None:
            raise HTTPException(status_code=404, detail="Feature not found")
        return {"feature": {k: v for k, v in feature.items() if k != "votes"}}

    @app.put("/api/v1/features/{feature_id}")
    async def update_feature(feature_id: str, update: FeatureUpdate):
        feature = app.state.features.get(feature_id)
        if feature is None:
            raise HTTPException(status_code=404, detail="Feature not found")
        allowed = {"score", "work_units", "original_estimate"}
        feature.update({k: v for k, v in update.feature.items() if k in allowed})
        return {"feature": {k: v for k, v in feature.items() if k != "votes"}}

    @app.get("/api/v1/features/{feature_id}/votes")
    async def list_votes(feature_id: str):
        feature = app.state.features.get(feature_id)
        if feature is None:
            raise HTTPException(status_code=404, detail="Feature not found")
        return {"votes": feature["votes"]}

    @app.post("/api/v1/features/{feature_id}/votes")
    async def create_vote(feature_id: str, body: VoteCreate):
        feature = app.state.features.get(feature_id)
        if feature is None:
            raise HTTPException(status_code=404, detail="Feature not found")
        app.state.vote_count += 1
        vote = {"id": f"v-{app.state.vote_count}", **body.vote}
        feature["votes"].append(vote)
        return {"vote": vote}

    @app.delete("/api/v1/features/{feature_id}/votes/{vote_id}")
    async def delete_vote(feature_id: str, vote_id: str):
        feature = app.state.features.get(feature_id)
        if feature is None:
            raise HTTPException(status_code=404, detail="Feature not found")
        feature["votes"] = [v for v in feature["votes"] if v["id"] != vote_id]
        return Response(status_code=204)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "server": name}

    return app


def create_app() -> FastAPI:
    """
    Factory function for uvicorn --factory.

    Reads RANDOM_SEED and ERROR_RATE from the environment.
    """
    return create_mock_app(
        random_seed=int(os.getenv("RANDOM_SEED", 42)),
        error_rate=float(os.getenv("ERROR_RATE", 0.0)),
    )
