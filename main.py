import os
import logging
from typing import List, Optional
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from database import db, PromotionStore
from promotions import PromotionEvaluator
from schemas import Cart, Promotion, PromotionUsage, RedemptionResult, UsageStats, ValidationResult

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"), format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Promotions API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_store() -> PromotionStore:
    if db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return PromotionStore(db)


def get_evaluator(store: PromotionStore = Depends(get_store)) -> PromotionEvaluator:
    return PromotionEvaluator(store)


@app.get("/")
def read_root():
    return {"message": "Promotions Backend Running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_name"] = db.name if hasattr(db, 'name') else "✅ Connected"
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                logger.warning("Database reachable but listing collections failed: %s", e)
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        logger.exception("Database status check failed")
        response["database"] = f"❌ Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"

    return response

# ---------------------- Promotion API ----------------------
class ValidatePromotionRequest(BaseModel):
    code: str = Field(..., min_length=1, description="Promotion code as typed by the customer")
    cart: Cart
    user_id: Optional[str] = None


@app.post("/api/promotions/validate", response_model=ValidationResult, response_model_exclude_none=True)
def validate_promotion(payload: ValidatePromotionRequest, evaluator: PromotionEvaluator = Depends(get_evaluator)):
    # Advisory only: the order commit re-checks limits in record_redemption
    return evaluator.validate(payload.code, payload.cart, payload.user_id)


@app.post("/api/promotions/redemptions", response_model=RedemptionResult)
def record_redemption(payload: PromotionUsage, store: PromotionStore = Depends(get_store)):
    result = store.record_redemption(payload)
    if not result.success:
        raise HTTPException(status_code=409, detail=result.message)
    return result


@app.get("/api/promotions/active", response_model=List[Promotion])
def list_active_promotions(store: PromotionStore = Depends(get_store)):
    return store.get_active_promotions()


@app.get("/api/promotions/{promotion_id}/stats", response_model=UsageStats)
def promotion_usage_stats(promotion_id: str, store: PromotionStore = Depends(get_store)):
    return store.get_usage_stats(promotion_id)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
