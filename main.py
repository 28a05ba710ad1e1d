import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database

import auth
import calendars
import database
import events
import friends
import gamification
import users
from auth import get_current_user
from config import CLIENT_URL, configure_logging
from database import get_db, now_utc
from errors import register_exception_handlers
from schemas import (
    AccountBody,
    CalendarCreate,
    CalendarUpdate,
    EventCreate,
    EventUpdate,
    FriendRequestBody,
    LoginBody,
    ProfileBody,
    RegisterBody,
    RespondBody,
    ShareBody,
    UnshareBody,
)

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes(database.db)
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set; requests will fail")
    yield


# App setup
app = FastAPI(title="Shared Calendar API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[CLIENT_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


# Auth Endpoints
@app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
def register(body: RegisterBody, db: Database = Depends(get_db)):
    return auth.register(db, body)


@app.post("/api/auth/login")
def login(body: LoginBody, db: Database = Depends(get_db)):
    return auth.login(db, body)


# User Endpoints
@app.get("/api/user/profile")
def get_profile(current=Depends(get_current_user)):
    return users.user_to_public(current)


@app.put("/api/user/profile")
def update_profile(body: ProfileBody, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return users.update_profile(db, current, body)


@app.put("/api/user/account")
def update_account(body: AccountBody, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return users.update_account(db, current, body)


# Events Endpoints
@app.get("/api/events")
def get_events(current=Depends(get_current_user), db: Database = Depends(get_db)):
    return events.list_my_events(db, current)


@app.get("/api/events/shared")
def get_shared_events(current=Depends(get_current_user), db: Database = Depends(get_db)):
    return events.list_shared_with_me(db, current)


@app.post("/api/events", status_code=status.HTTP_201_CREATED)
def create_event(body: EventCreate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return events.create_event(db, current, body)


@app.put("/api/events/{event_id}")
def update_event(event_id: str, body: EventUpdate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return events.update_event(db, event_id, current, body)


@app.delete("/api/events/{event_id}")
def delete_event(event_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    events.delete_event(db, event_id, current)
    return {"message": "Event deleted successfully"}


@app.get("/api/events/{event_id}/occurrences")
def get_occurrences(
    event_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    current=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return events.event_occurrences(db, event_id, current, now_utc().date(), start, end)


# Calendar Endpoints
@app.get("/api/calendars")
def get_calendars(current=Depends(get_current_user), db: Database = Depends(get_db)):
    return calendars.list_calendars(db, current)


@app.post("/api/calendars", status_code=status.HTTP_201_CREATED)
def create_calendar(body: CalendarCreate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return calendars.create_calendar(db, current, body)


@app.put("/api/calendars/{calendar_id}")
def update_calendar(
    calendar_id: str, body: CalendarUpdate, current=Depends(get_current_user), db: Database = Depends(get_db)
):
    return calendars.update_calendar(db, calendar_id, current, body)


@app.delete("/api/calendars/{calendar_id}")
def delete_calendar(calendar_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    removed = calendars.delete_calendar(db, calendar_id, current)
    return {"message": "Calendar deleted", "events_deleted": removed}


@app.get("/api/calendars/{calendar_id}/events")
def get_calendar_events(calendar_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return events.list_calendar_events(db, calendar_id, current)


@app.post("/api/calendars/{calendar_id}/share")
def share_calendar(calendar_id: str, body: ShareBody, current=Depends(get_current_user), db: Database = Depends(get_db)):
    results = calendars.share(db, calendar_id, current, body.friend_ids, body.permission)
    return {"message": "Calendar sharing updated", "results": results}


@app.post("/api/calendars/{calendar_id}/unshare")
def unshare_calendar(
    calendar_id: str, body: UnshareBody, current=Depends(get_current_user), db: Database = Depends(get_db)
):
    calendars.unshare(db, calendar_id, current, body.user_id)
    return {"message": "Calendar unshared successfully"}


@app.get("/api/calendars/{calendar_id}/sharing")
def get_calendar_sharing(calendar_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return calendars.list_sharing(db, calendar_id, current)


# Friends Endpoints
@app.get("/api/friends")
def get_friends(current=Depends(get_current_user), db: Database = Depends(get_db)):
    return users.list_friends(db, current)


@app.get("/api/friends/search")
def search_friends(q: str = "", current=Depends(get_current_user), db: Database = Depends(get_db)):
    return users.search_users(db, current, q)


@app.post("/api/friends/requests", status_code=status.HTTP_201_CREATED)
def send_friend_request(body: FriendRequestBody, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return friends.send_request(db, current, body.to)


@app.get("/api/friends/requests/incoming")
def get_incoming_requests(current=Depends(get_current_user), db: Database = Depends(get_db)):
    return friends.list_incoming(db, current)


@app.get("/api/friends/requests/outgoing")
def get_outgoing_requests(current=Depends(get_current_user), db: Database = Depends(get_db)):
    return friends.list_outgoing(db, current)


@app.put("/api/friends/requests/{request_id}")
def respond_friend_request(
    request_id: str, body: RespondBody, current=Depends(get_current_user), db: Database = Depends(get_db)
):
    return friends.respond(db, request_id, current, body.accept)


@app.delete("/api/friends/requests/{request_id}")
def cancel_friend_request(request_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    friends.cancel(db, request_id, current)
    return {"message": "Request cancelled"}


@app.delete("/api/friends/{friend_id}")
def remove_friend(friend_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    users.remove_friend(db, current, friend_id)
    return {"message": "Removed"}


# Gamification Endpoints
@app.post("/api/gamification/complete/{event_id}")
def complete_event(event_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return gamification.complete(db, event_id, current)


@app.post("/api/gamification/uncomplete/{event_id}")
def uncomplete_event(event_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return gamification.uncomplete(db, event_id, current)


@app.get("/api/gamification/stats")
def get_stats(current=Depends(get_current_user), db: Database = Depends(get_db)):
    return gamification.stats(db, current)


@app.get("/api/gamification/leaderboard")
def get_leaderboard(current=Depends(get_current_user), db: Database = Depends(get_db)):
    return gamification.leaderboard(db, current)


@app.get("/health")
def health():
    return {"status": "OK"}


if __name__ == "__main__":
    import uvicorn
    from config import PORT
    uvicorn.run(app, host="0.0.0.0", port=PORT)
