"""
Friend request workflow.

A request starts ``pending`` and moves once to ``accepted`` or ``rejected``;
the sender may instead cancel it while it is still pending, which deletes
the record. At most one pending request exists per unordered pair of users.
"""
import logging
from typing import List

from pymongo.database import Database

from database import create_document, now_utc, serialize, to_object_id
from errors import AlreadyFriends, AlreadyProcessed, DuplicateRequest, Forbidden, InvalidTarget, NotFound
from schemas import FriendRequest as FriendRequestSchema
from users import are_friends, get_user_by_id, summaries_by_id

logger = logging.getLogger(__name__)

PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"


def pair_key(a, b) -> str:
    return ":".join(sorted([str(a), str(b)]))


def _get_request(db: Database, request_id: str) -> dict:
    oid = to_object_id(request_id)
    req = db["friendrequest"].find_one({"_id": oid}) if oid else None
    if req is None:
        raise NotFound("Friend request not found")
    return req


def send_request(db: Database, sender: dict, to: str) -> dict:
    if str(sender["_id"]) == str(to):
        raise InvalidTarget("Cannot send a friend request to yourself")
    target = get_user_by_id(db, to)
    if target is None:
        raise NotFound("User not found")
    if are_friends(sender, target["_id"]):
        raise AlreadyFriends()

    pending = db["friendrequest"].find_one(
        {
            "status": PENDING,
            "$or": [
                {"from_user": sender["_id"], "to_user": target["_id"]},
                {"from_user": target["_id"], "to_user": sender["_id"]},
            ],
        }
    )
    if pending:
        raise DuplicateRequest()

    doc = FriendRequestSchema(
        from_user=sender["_id"],
        to_user=target["_id"],
        pair=pair_key(sender["_id"], target["_id"]),
    ).model_dump()
    inserted_id = create_document(db, "friendrequest", doc)
    logger.info("Friend request %s: %s -> %s", inserted_id, sender["_id"], target["_id"])
    return serialize(db["friendrequest"].find_one({"_id": inserted_id}))


def respond(db: Database, request_id: str, responder: dict, accept: bool) -> dict:
    req = _get_request(db, request_id)
    if req["to_user"] != responder["_id"]:
        raise Forbidden("Only the recipient can respond to this request")
    if req["status"] != PENDING:
        raise AlreadyProcessed()

    new_status = ACCEPTED if accept else REJECTED
    if accept:
        db["user"].update_one({"_id": req["to_user"]}, {"$addToSet": {"friends": req["from_user"]}})
        db["user"].update_one({"_id": req["from_user"]}, {"$addToSet": {"friends": req["to_user"]}})
    db["friendrequest"].update_one(
        {"_id": req["_id"]}, {"$set": {"status": new_status, "updated_at": now_utc()}}
    )
    logger.info("Friend request %s %s", req["_id"], new_status)
    req["status"] = new_status
    return serialize(req)


def cancel(db: Database, request_id: str, canceller: dict) -> None:
    req = _get_request(db, request_id)
    if req["from_user"] != canceller["_id"]:
        raise Forbidden("Only the sender can cancel this request")
    if req["status"] != PENDING:
        raise AlreadyProcessed()
    db["friendrequest"].delete_one({"_id": req["_id"]})
    logger.info("Friend request %s cancelled", req["_id"])


def _list(db: Database, query: dict, other_field: str) -> List[dict]:
    reqs = list(db["friendrequest"].find(query).sort("created_at", -1))
    people = summaries_by_id(db, [r[other_field] for r in reqs])
    out = []
    for r in reqs:
        item = serialize(r)
        item["user"] = people.get(r[other_field])
        out.append(item)
    return out


def list_incoming(db: Database, user: dict) -> List[dict]:
    return _list(db, {"to_user": user["_id"], "status": PENDING}, "from_user")


def list_outgoing(db: Database, user: dict) -> List[dict]:
    return _list(db, {"from_user": user["_id"], "status": PENDING}, "to_user")
