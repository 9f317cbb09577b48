"""
Storage backends for users, providers, shipment requests, bids and feedback.

Reads return ``None`` when a record is absent. Mutations on a missing id raise
``NotFoundError`` and leave every record untouched. Ids are integers issued in
strictly increasing order per entity type.
"""
import functools
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from matching import match_by_position, match_by_score
from schemas import (
    Bid,
    BidCreate,
    BidStatus,
    Feedback,
    FeedbackCreate,
    MatchedProvider,
    Provider,
    ProviderCreate,
    ProviderStatus,
    ShipmentRequest,
    ShipmentRequestCreate,
    ShipmentRequestStatus,
    User,
    UserCreate,
)

logger = logging.getLogger(__name__)

REQUEST_ID_OFFSET = 1234


class StorageError(Exception):
    pass


class NotFoundError(StorageError):
    pass


class ConflictError(StorageError):
    pass


class InvalidTransitionError(StorageError):
    pass


def make_request_id(record_id: int) -> str:
    return f"REQ-{REQUEST_ID_OFFSET + record_id}"


def check_metric_fields(fields: dict, allow_score: bool) -> None:
    if "score" in fields and not allow_score:
        raise ValueError("Provider score is computed from feedback ratings")


def _locked(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


def check_bid_transition(bid: Bid, status: BidStatus) -> None:
    """Bids leave Pending once, for Accepted or Rejected."""
    if status == BidStatus.PENDING:
        raise InvalidTransitionError(f"Bid with ID {bid.id} cannot be moved back to {status.value}")
    if bid.status != BidStatus.PENDING:
        raise InvalidTransitionError(f"Bid with ID {bid.id} is already {bid.status.value}")


class Storage(ABC):
    name = "abstract"

    # User operations
    @abstractmethod
    def get_user(self, user_id: int) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[User]: ...

    @abstractmethod
    def create_user(self, data: UserCreate) -> User: ...

    # Provider operations
    @abstractmethod
    def get_provider(self, provider_id: int) -> Optional[Provider]: ...

    @abstractmethod
    def get_provider_by_user_id(self, user_id: int) -> Optional[Provider]: ...

    @abstractmethod
    def get_all_providers(self) -> List[Provider]: ...

    @abstractmethod
    def get_top_providers(self, limit: int) -> List[Provider]: ...

    @abstractmethod
    def create_provider(self, data: ProviderCreate) -> Provider: ...

    @abstractmethod
    def update_provider_status(self, provider_id: int, status: ProviderStatus) -> Provider: ...

    @abstractmethod
    def update_provider_metrics(self, provider_id: int, allow_score: bool = False, **fields) -> Provider:
        """
        Overwrite track-record fields (on-time rate, response time, owner...).

        ``score`` is derived from feedback and is refused unless ``allow_score``
        is set; the demo seed is the only caller that sets it.
        """

    # Shipment request operations
    @abstractmethod
    def get_shipment_request(self, request_id: int) -> Optional[ShipmentRequest]: ...

    @abstractmethod
    def get_shipment_request_by_request_id(self, request_id: str) -> Optional[ShipmentRequest]: ...

    @abstractmethod
    def get_shipment_requests_by_user_id(self, user_id: int) -> List[ShipmentRequest]: ...

    @abstractmethod
    def create_shipment_request(self, data: ShipmentRequestCreate) -> ShipmentRequest: ...

    @abstractmethod
    def update_shipment_request_status(self, request_id: int, status: ShipmentRequestStatus) -> ShipmentRequest: ...

    @abstractmethod
    def assign_provider(self, request_id: int, provider_id: int) -> ShipmentRequest: ...

    # Bid operations
    @abstractmethod
    def get_bid(self, bid_id: int) -> Optional[Bid]: ...

    @abstractmethod
    def get_bids_by_shipment_request_id(self, shipment_request_id: int) -> List[Bid]: ...

    @abstractmethod
    def get_bids_by_provider_id(self, provider_id: int) -> List[Bid]: ...

    @abstractmethod
    def create_bid(self, data: BidCreate) -> Bid: ...

    @abstractmethod
    def update_bid_status(self, bid_id: int, status: BidStatus) -> Bid: ...

    # Feedback operations
    @abstractmethod
    def get_feedback(self, feedback_id: int) -> Optional[Feedback]: ...

    @abstractmethod
    def get_feedback_by_shipment_request_id(self, shipment_request_id: int) -> Optional[Feedback]: ...

    @abstractmethod
    def get_feedbacks_by_provider_id(self, provider_id: int) -> List[Feedback]: ...

    @abstractmethod
    def create_feedback(self, data: FeedbackCreate) -> Feedback: ...

    def find_matching_providers(self, shipment_request_id: int, strategy: str = "position") -> List[MatchedProvider]:
        if strategy == "scored":
            request = self.get_shipment_request(shipment_request_id)
            if request is None:
                raise NotFoundError(f"Shipment request with ID {shipment_request_id} not found")
            return match_by_score(request, self.get_all_providers())
        return match_by_position(self.get_all_providers())


class MemStorage(Storage):
    """Process-local maps, lost on restart."""

    name = "memory"

    def __init__(self):
        self._users: Dict[int, User] = {}
        self._providers: Dict[int, Provider] = {}
        self._shipment_requests: Dict[int, ShipmentRequest] = {}
        self._bids: Dict[int, Bid] = {}
        self._feedbacks: Dict[int, Feedback] = {}

        self._user_ids = itertools.count(1)
        self._provider_ids = itertools.count(1)
        self._shipment_request_ids = itertools.count(1)
        self._bid_ids = itertools.count(1)
        self._feedback_ids = itertools.count(1)

        # Routes run in a threadpool; every public method holds this lock
        self._lock = threading.RLock()

    # User operations
    @_locked
    def get_user(self, user_id):
        return self._users.get(user_id)

    @_locked
    def get_user_by_username(self, username):
        return next((u for u in self._users.values() if u.username == username), None)

    @_locked
    def create_user(self, data):
        if self.get_user_by_username(data.username) is not None:
            raise ConflictError(f"Username {data.username} already exists")
        user = User(**data.model_dump(), id=next(self._user_ids))
        self._users[user.id] = user
        return user

    # Provider operations
    @_locked
    def get_provider(self, provider_id):
        return self._providers.get(provider_id)

    @_locked
    def get_provider_by_user_id(self, user_id):
        return next((p for p in self._providers.values() if p.user_id == user_id), None)

    @_locked
    def get_all_providers(self):
        return list(self._providers.values())

    @_locked
    def get_top_providers(self, limit):
        return sorted(self._providers.values(), key=lambda p: p.score, reverse=True)[:limit]

    @_locked
    def create_provider(self, data):
        provider = Provider(**data.model_dump(), id=next(self._provider_ids))
        self._providers[provider.id] = provider
        return provider

    @_locked
    def update_provider_status(self, provider_id, status):
        return self._set_provider_fields(provider_id, {"status": status})

    @_locked
    def update_provider_metrics(self, provider_id, allow_score=False, **fields):
        check_metric_fields(fields, allow_score)
        return self._set_provider_fields(provider_id, fields)

    def _set_provider_fields(self, provider_id, fields):
        provider = self._providers.get(provider_id)
        if provider is None:
            raise NotFoundError(f"Provider with ID {provider_id} not found")
        updated = provider.model_copy(update=fields)
        self._providers[provider_id] = updated
        return updated

    # Shipment request operations
    @_locked
    def get_shipment_request(self, request_id):
        return self._shipment_requests.get(request_id)

    @_locked
    def get_shipment_request_by_request_id(self, request_id):
        return next((r for r in self._shipment_requests.values() if r.request_id == request_id), None)

    @_locked
    def get_shipment_requests_by_user_id(self, user_id):
        return [r for r in self._shipment_requests.values() if r.user_id == user_id]

    @_locked
    def create_shipment_request(self, data):
        record_id = next(self._shipment_request_ids)
        fields = data.model_dump()
        fields["user_id"] = fields.get("user_id") or 0
        request = ShipmentRequest(**fields, id=record_id, request_id=make_request_id(record_id))
        self._shipment_requests[record_id] = request
        return request

    @_locked
    def update_shipment_request_status(self, request_id, status):
        request = self._shipment_requests.get(request_id)
        if request is None:
            raise NotFoundError(f"Shipment request with ID {request_id} not found")
        updated = request.model_copy(update={"status": status})
        self._shipment_requests[request_id] = updated
        return updated

    @_locked
    def assign_provider(self, request_id, provider_id):
        request = self._shipment_requests.get(request_id)
        if request is None:
            raise NotFoundError(f"Shipment request with ID {request_id} not found")
        if provider_id not in self._providers:
            raise NotFoundError(f"Provider with ID {provider_id} not found")
        updated = request.model_copy(update={
            "assigned_provider_id": provider_id,
            "status": ShipmentRequestStatus.ASSIGNED,
        })
        self._shipment_requests[request_id] = updated
        return updated

    # Bid operations
    @_locked
    def get_bid(self, bid_id):
        return self._bids.get(bid_id)

    @_locked
    def get_bids_by_shipment_request_id(self, shipment_request_id):
        return [b for b in self._bids.values() if b.shipment_request_id == shipment_request_id]

    @_locked
    def get_bids_by_provider_id(self, provider_id):
        return [b for b in self._bids.values() if b.provider_id == provider_id]

    @_locked
    def create_bid(self, data):
        bid = Bid(**data.model_dump(), id=next(self._bid_ids))
        self._bids[bid.id] = bid
        return bid

    @_locked
    def update_bid_status(self, bid_id, status):
        bid = self._bids.get(bid_id)
        if bid is None:
            raise NotFoundError(f"Bid with ID {bid_id} not found")
        check_bid_transition(bid, status)
        updated = bid.model_copy(update={"status": status})
        self._bids[bid_id] = updated
        return updated

    # Feedback operations
    @_locked
    def get_feedback(self, feedback_id):
        return self._feedbacks.get(feedback_id)

    @_locked
    def get_feedback_by_shipment_request_id(self, shipment_request_id):
        return next((f for f in self._feedbacks.values() if f.shipment_request_id == shipment_request_id), None)

    @_locked
    def get_feedbacks_by_provider_id(self, provider_id):
        return [f for f in self._feedbacks.values() if f.provider_id == provider_id]

    @_locked
    def create_feedback(self, data):
        feedback = Feedback(**data.model_dump(), id=next(self._feedback_ids))
        self._feedbacks[feedback.id] = feedback
        self._refresh_provider_score(feedback.provider_id)
        return feedback

    def _refresh_provider_score(self, provider_id: int) -> None:
        if provider_id not in self._providers:
            return
        ratings = [f.rating for f in self.get_feedbacks_by_provider_id(provider_id)]
        self._set_provider_fields(provider_id, {
            "score": sum(ratings) / len(ratings),
            "completed_jobs": len(ratings),
        })


class MongoStorage(Storage):
    """
    One collection per entity, documents keyed by their integer id.

    Ids come from the ``counters`` collection via an atomic ``$inc`` so they
    stay monotonic across restarts and processes.
    """

    name = "mongo"

    def __init__(self, db: Database):
        self.db = db
        self.db["user"].create_index("username", unique=True)
        self.db["shipmentrequest"].create_index("request_id", unique=True)

    # --------- Helper functions ---------

    def _next_id(self, collection: str) -> int:
        counter = self.db["counters"].find_one_and_update(
            {"_id": collection},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter["seq"]

    @staticmethod
    def _to_document(record) -> dict:
        doc = record.model_dump(mode="json")
        doc["_id"] = record.id
        return doc

    @staticmethod
    def _from_document(model, doc):
        if doc is None:
            return None
        doc = dict(doc)
        doc.pop("_id", None)
        return model.model_validate(doc)

    def _find_one(self, collection, model, query):
        return self._from_document(model, self.db[collection].find_one(query))

    def _find(self, collection, model, query, sort_key="_id", direction=ASCENDING, limit=0):
        cursor = self.db[collection].find(query).sort(sort_key, direction)
        if limit:
            cursor = cursor.limit(limit)
        return [self._from_document(model, d) for d in cursor]

    def _update(self, collection, model, record_id, fields, label):
        doc = self.db[collection].find_one_and_update(
            {"_id": record_id},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFoundError(f"{label} with ID {record_id} not found")
        return self._from_document(model, doc)

    # User operations
    def get_user(self, user_id):
        return self._find_one("user", User, {"_id": user_id})

    def get_user_by_username(self, username):
        return self._find_one("user", User, {"username": username})

    def create_user(self, data):
        if self.get_user_by_username(data.username) is not None:
            raise ConflictError(f"Username {data.username} already exists")
        user = User(**data.model_dump(), id=self._next_id("user"))
        try:
            self.db["user"].insert_one(self._to_document(user))
        except DuplicateKeyError:
            raise ConflictError(f"Username {data.username} already exists")
        return user

    # Provider operations
    def get_provider(self, provider_id):
        return self._find_one("provider", Provider, {"_id": provider_id})

    def get_provider_by_user_id(self, user_id):
        return self._find_one("provider", Provider, {"user_id": user_id})

    def get_all_providers(self):
        return self._find("provider", Provider, {})

    def get_top_providers(self, limit):
        return self._find("provider", Provider, {}, sort_key="score", direction=DESCENDING, limit=limit)

    def create_provider(self, data):
        provider = Provider(**data.model_dump(), id=self._next_id("provider"))
        self.db["provider"].insert_one(self._to_document(provider))
        return provider

    def update_provider_status(self, provider_id, status):
        return self._update("provider", Provider, provider_id, {"status": status.value}, "Provider")

    def update_provider_metrics(self, provider_id, allow_score=False, **fields):
        check_metric_fields(fields, allow_score)
        fields = {k: getattr(v, "value", v) for k, v in fields.items()}
        return self._update("provider", Provider, provider_id, fields, "Provider")

    # Shipment request operations
    def get_shipment_request(self, request_id):
        return self._find_one("shipmentrequest", ShipmentRequest, {"_id": request_id})

    def get_shipment_request_by_request_id(self, request_id):
        return self._find_one("shipmentrequest", ShipmentRequest, {"request_id": request_id})

    def get_shipment_requests_by_user_id(self, user_id):
        return self._find("shipmentrequest", ShipmentRequest, {"user_id": user_id})

    def create_shipment_request(self, data):
        record_id = self._next_id("shipmentrequest")
        fields = data.model_dump()
        fields["user_id"] = fields.get("user_id") or 0
        request = ShipmentRequest(**fields, id=record_id, request_id=make_request_id(record_id))
        self.db["shipmentrequest"].insert_one(self._to_document(request))
        return request

    def update_shipment_request_status(self, request_id, status):
        return self._update("shipmentrequest", ShipmentRequest, request_id, {"status": status.value}, "Shipment request")

    def assign_provider(self, request_id, provider_id):
        if self.get_shipment_request(request_id) is None:
            raise NotFoundError(f"Shipment request with ID {request_id} not found")
        if self.get_provider(provider_id) is None:
            raise NotFoundError(f"Provider with ID {provider_id} not found")
        return self._update(
            "shipmentrequest",
            ShipmentRequest,
            request_id,
            {"assigned_provider_id": provider_id, "status": ShipmentRequestStatus.ASSIGNED.value},
            "Shipment request",
        )

    # Bid operations
    def get_bid(self, bid_id):
        return self._find_one("bid", Bid, {"_id": bid_id})

    def get_bids_by_shipment_request_id(self, shipment_request_id):
        return self._find("bid", Bid, {"shipment_request_id": shipment_request_id})

    def get_bids_by_provider_id(self, provider_id):
        return self._find("bid", Bid, {"provider_id": provider_id})

    def create_bid(self, data):
        bid = Bid(**data.model_dump(), id=self._next_id("bid"))
        self.db["bid"].insert_one(self._to_document(bid))
        return bid

    def update_bid_status(self, bid_id, status):
        bid = self.get_bid(bid_id)
        if bid is None:
            raise NotFoundError(f"Bid with ID {bid_id} not found")
        check_bid_transition(bid, status)
        doc = self.db["bid"].find_one_and_update(
            {"_id": bid_id, "status": BidStatus.PENDING.value},
            {"$set": {"status": status.value}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            # Another writer settled the bid between the read and the update
            raise InvalidTransitionError(f"Bid with ID {bid_id} is no longer {BidStatus.PENDING.value}")
        return self._from_document(Bid, doc)

    # Feedback operations
    def get_feedback(self, feedback_id):
        return self._find_one("feedback", Feedback, {"_id": feedback_id})

    def get_feedback_by_shipment_request_id(self, shipment_request_id):
        return self._find_one("feedback", Feedback, {"shipment_request_id": shipment_request_id})

    def get_feedbacks_by_provider_id(self, provider_id):
        return self._find("feedback", Feedback, {"provider_id": provider_id})

    def create_feedback(self, data):
        feedback = Feedback(**data.model_dump(), id=self._next_id("feedback"))
        self.db["feedback"].insert_one(self._to_document(feedback))
        self._refresh_provider_score(feedback.provider_id)
        return feedback

    def _refresh_provider_score(self, provider_id: int) -> None:
        agg = list(self.db["feedback"].aggregate([
            {"$match": {"provider_id": provider_id}},
            {"$group": {"_id": "$provider_id", "avg": {"$avg": "$rating"}, "count": {"$sum": 1}}},
        ]))
        if not agg:
            return
        self.db["provider"].update_one(
            {"_id": provider_id},
            {"$set": {"score": float(agg[0]["avg"]), "completed_jobs": int(agg[0]["count"])}},
        )


def build_storage(settings, db: Optional[Database] = None) -> Storage:
    if settings.storage_backend == "mongo":
        if db is None:
            raise StorageError("STORAGE_BACKEND=mongo requires DATABASE_URL")
        logger.info("Using MongoDB storage")
        return MongoStorage(db)
    logger.info("Using in-memory storage")
    return MemStorage()
