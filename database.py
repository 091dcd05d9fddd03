"""
Database Helpers

MongoDB connection configured from the environment (DATABASE_URL and
DATABASE_NAME, optionally from a .env file), generic document helpers, and
the promotion store used by the validation engine and the order commit.
"""

import os
import logging
from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError

from schemas import Promotion, PromotionUsage, RedemptionResult, UsageStats

load_dotenv()

logger = logging.getLogger(__name__)

PROMOTIONS = "promotion"
USAGES = "promotion_usage"

_client = None
db = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    _client = MongoClient(database_url, tz_aware=True)
    db = _client[database_name]


def create_document(collection_name: str, data, database=None) -> str:
    """Insert a document and return its id as a string."""
    database = database if database is not None else db
    if database is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)

    now = datetime.now(timezone.utc)
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now

    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, database=None) -> list:
    database = database if database is not None else db
    if database is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def _object_id(value: str):
    # ids that are not 24-char hex (test or legacy ids) are kept as strings
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return value


def _promotion_ref(promotion_id: str) -> dict:
    # usage documents hold the promotion either as a string or as an ObjectId
    forms = [promotion_id]
    converted = _object_id(promotion_id)
    if converted != promotion_id:
        forms.append(converted)
    return {"$in": forms}


class PromotionStore:
    """Promotion and usage queries over MongoDB."""

    def __init__(self, database) -> None:
        self._db = database

    @property
    def promotions(self):
        return self._db[PROMOTIONS]

    @property
    def usages(self):
        return self._db[USAGES]

    def ensure_indexes(self) -> None:
        self.promotions.create_index("code", unique=True)
        self.promotions.create_index([("active", 1), ("start_date", 1), ("end_date", 1)])
        self.usages.create_index([("promotion", 1), ("user", 1)])
        self.usages.create_index([("promotion", 1), ("order", 1)], unique=True)

    def find_promotion_by_code(self, code: str) -> Optional[Promotion]:
        doc = self.promotions.find_one({"code": code.strip().upper()})
        if not doc:
            return None
        return Promotion.from_document(doc)

    def count_redemptions_for_user(self, promotion_id: str, user_id: str) -> int:
        return self.usages.count_documents({"promotion": _promotion_ref(promotion_id), "user": user_id})

    def record_redemption(self, usage: PromotionUsage, now: Optional[datetime] = None) -> RedemptionResult:
        """
        Commit one redemption for a placed order.

        The increment of used_count is a single conditional update: it only
        matches while the promotion is active, inside its window and under
        its usage limit, so two orders racing for the last slot cannot both
        succeed. Recording the same order twice is a no-op.
        """
        now = now or datetime.now(timezone.utc)

        if self.usages.find_one({"order": usage.order}):
            return RedemptionResult(success=True, message="Promotion usage already recorded for this order")

        promotion_id = _object_id(usage.promotion)
        doc = self.promotions.find_one({"_id": promotion_id})
        if not doc:
            return RedemptionResult(success=False, message="Promotion not found")

        promotion = Promotion.from_document(doc)
        if promotion.user_usage_limit:
            used = self.count_redemptions_for_user(usage.promotion, usage.user)
            if used >= promotion.user_usage_limit:
                return RedemptionResult(success=False, message="You have reached the usage limit for this promotion")

        updated = self.promotions.find_one_and_update(
            {
                "_id": promotion_id,
                "active": True,
                "start_date": {"$lte": now},
                "end_date": {"$gte": now},
                "$or": [
                    {"usage_limit": {"$in": [None, 0]}},
                    {"$expr": {"$lt": ["$used_count", "$usage_limit"]}},
                ],
            },
            {"$inc": {"used_count": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            logger.info("Redemption of promotion %s refused for order %s", usage.promotion, usage.order)
            return RedemptionResult(success=False, message="Promotion is no longer available")

        try:
            create_document(USAGES, usage, database=self._db)
        except DuplicateKeyError:
            self.promotions.update_one({"_id": promotion_id}, {"$inc": {"used_count": -1}})
            return RedemptionResult(success=True, message="Promotion usage already recorded for this order")
        except Exception:
            self.promotions.update_one({"_id": promotion_id}, {"$inc": {"used_count": -1}})
            raise

        logger.info(
            "Recorded redemption of promotion %s for order %s (used %s)",
            usage.promotion,
            usage.order,
            updated.get("used_count"),
        )
        return RedemptionResult(success=True, message="Promotion usage recorded")

    def get_usage_stats(self, promotion_id: str) -> UsageStats:
        rows = list(self.usages.aggregate([
            {"$match": {"promotion": _promotion_ref(promotion_id)}},
            {
                "$group": {
                    "_id": None,
                    "total_usage": {"$sum": 1},
                    "total_discount_given": {"$sum": "$discount_amount"},
                    "average_discount": {"$avg": "$discount_amount"},
                    "unique_users": {"$addToSet": "$user"},
                }
            },
            {"$addFields": {"unique_user_count": {"$size": "$unique_users"}}},
            {"$project": {"unique_users": 0}},
        ]))
        if not rows:
            return UsageStats()
        row = rows[0]
        return UsageStats(
            total_usage=row.get("total_usage", 0),
            total_discount_given=round(float(row.get("total_discount_given") or 0), 2),
            average_discount=round(float(row.get("average_discount") or 0), 2),
            unique_user_count=row.get("unique_user_count", 0),
        )

    def get_active_promotions(self, now: Optional[datetime] = None) -> List[Promotion]:
        now = now or datetime.now(timezone.utc)
        cursor = self.promotions.find({
            "active": True,
            "start_date": {"$lte": now},
            "end_date": {"$gte": now},
            "$or": [
                {"usage_limit": {"$in": [None, 0]}},
                {"$expr": {"$lt": ["$used_count", "$usage_limit"]}},
            ],
        }).sort("created_at", DESCENDING)
        return [Promotion.from_document(doc) for doc in cursor]
