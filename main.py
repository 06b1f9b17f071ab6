import logging
from datetime import date
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, status

import db
from app.services import adhoc_sends
from app.types.schedule_contract import BroadcastRequest, CourseView, DeliveryRecord
from app.utils.mail import MailDeliveryError
from config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
_LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Quiz reminder backend")


@app.on_event("startup")
async def startup_event():
    # Alembic owns the schema in deployments; this only fills in a fresh SQLite file.
    await db.create_all()

@app.on_event("shutdown")
async def shutdown_event():
    await db.dispose_engine()


async def _require_user(user_id: int) -> dict:
    user = await db.get_user(user_id)
    if user is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "User not found")
    return user

# --------------------------------------------
# Endpoints
# --------------------------------------------
@app.get("/api/health")
async def health():
    return {"ok": True}


@app.get("/api/users/{user_id}/email-logs", response_model=List[DeliveryRecord])
async def email_logs(
    user_id: int,
    course_name: Optional[str] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
):
    return await db.search_email_logs(user_id, course_name, from_date, to_date)


@app.get("/api/users/{user_id}/courses", response_model=List[CourseView])
async def courses(user_id: int):
    return await db.list_courses_with_reminder_state(user_id)


@app.post("/api/users/{user_id}/send-test-email")
async def send_test_email(user_id: int):
    user = await _require_user(user_id)
    try:
        await adhoc_sends.send_test_email(user["id"], user["email"])
    except adhoc_sends.CooldownActive as exc:
        raise HTTPException(
            status.HTTP_429_TOO_MANY_REQUESTS,
            str(exc),
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )
    except MailDeliveryError as exc:
        _LOGGER.warning("Test email for user %s failed: %s", user_id, exc)
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, "Sending failed, try again shortly")
    return {"success": True, "message": "Test email sent, check your inbox"}


@app.post("/api/admin/broadcast")
async def admin_broadcast(request: BroadcastRequest):
    result = await adhoc_sends.broadcast(request.subject, request.body)
    return {"success": True, "sent": result.sent, "failed": result.failed}


@app.get("/api/admin/email-stats")
async def admin_email_stats():
    return await db.email_stats()


@app.get("/api/admin/users")
async def admin_users():
    return await db.list_users()


def serve():
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    serve()
